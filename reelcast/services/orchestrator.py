from __future__ import annotations

import asyncio
import enum
import re
import shutil
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, List, Optional, Sequence
from uuid import uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from reelcast.core.config import Settings
from reelcast.core.errors import ConfigurationError, FingerprintError, ReelcastError
from reelcast.core.logging import get_logger
from reelcast.db.models import AssetRecord, RemoteState
from reelcast.ingest.derivatives import generate_derivatives
from reelcast.ingest.downloader import PROVENANCE_SUFFIX, provenance_path_for, read_provenance, unique_destination
from reelcast.ingest.ffprobe_parser import MediaAttributes, probe_media
from reelcast.ingest.fingerprint import fingerprint_file
from reelcast.providers import PublishOutcome, VideoProvider, publish

from .catalog import CatalogRepository, DedupLedger, export_from_session


class Disposition(str, enum.Enum):
    processed = "processed"
    duplicate = "duplicate"
    failed = "failed"


class Stage(str, enum.Enum):
    discovered = "discovered"
    fingerprinted = "fingerprinted"
    duplicate = "duplicate"
    deduped_unique = "deduped-unique"
    metadata_extracted = "metadata-extracted"
    derivatives_generated = "derivatives-generated"
    published = "published"
    cataloged = "cataloged"
    failed = "failed"


@dataclass(slots=True)
class FileOutcome:
    path: Path
    stage: Stage = Stage.discovered
    disposition: Optional[Disposition] = None
    content_hash: Optional[str] = None
    record_id: Optional[str] = None
    media: Optional[MediaAttributes] = None
    error: Optional[str] = None
    failed_at: Optional[Stage] = None
    destination: Optional[Path] = None


@dataclass(slots=True)
class RunSummary:
    outcomes: List[FileOutcome] = field(default_factory=list)
    dry_run: bool = False

    def _count(self, disposition: Disposition) -> int:
        return sum(1 for outcome in self.outcomes if outcome.disposition is disposition)

    @property
    def processed(self) -> int:
        return self._count(Disposition.processed)

    @property
    def duplicate(self) -> int:
        return self._count(Disposition.duplicate)

    @property
    def failed(self) -> int:
        return self._count(Disposition.failed)

    @property
    def total(self) -> int:
        return len(self.outcomes)


def derive_title(filename: str) -> str:
    """``my_first-clip.mp4`` -> ``My First Clip``."""
    stem = Path(filename).stem
    spaced = re.sub(r"[-_]", " ", stem)
    return re.sub(r"\b\w", lambda match: match.group(0).upper(), spaced)


def discover_intake(intake_dir: Path, extensions: Iterable[str]) -> List[Path]:
    """Return the media files waiting directly inside ``intake_dir``, sorted by name."""
    if not intake_dir.is_dir():
        return []
    allowed = {ext.lower() for ext in extensions}
    return sorted(
        path
        for path in intake_dir.iterdir()
        if path.is_file()
        and not path.name.startswith(".")
        and not path.name.endswith(PROVENANCE_SUFFIX)
        and path.suffix.lower() in allowed
    )


def preflight(settings: Settings, *, dry_run: bool = False) -> None:
    """Fail fast on configuration problems before any intake file is touched."""
    missing = [tool for tool in ("ffprobe", "ffmpeg") if shutil.which(tool) is None]
    if missing:
        raise ConfigurationError(f"required tools not found on PATH: {', '.join(missing)}")
    if settings.intake_dir.exists() and not settings.intake_dir.is_dir():
        raise ConfigurationError(f"intake path is not a directory: {settings.intake_dir}")
    if dry_run:
        return
    for directory in (
        settings.intake_dir,
        settings.processed_path,
        settings.duplicates_path,
        settings.failed_path,
        settings.preview_dir,
    ):
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise ConfigurationError(f"cannot create {directory}: {exc}") from exc


class IngestOrchestrator:
    """Walks intake files through fingerprint, dedup, probe, derivatives, publish and catalog."""

    def __init__(
        self,
        settings: Settings,
        session_factory: async_sessionmaker[AsyncSession],
        primary: Optional[VideoProvider],
        secondaries: Sequence[VideoProvider] = (),
    ):
        self.settings = settings
        self.session_factory = session_factory
        self.primary = primary
        self.secondaries = list(secondaries)
        self.logger = get_logger(component="orchestrator")
        self._catalog_lock = asyncio.Lock()

    async def run(self, *, dry_run: bool = False) -> RunSummary:
        files = discover_intake(self.settings.intake_dir, self.settings.normalized_extensions)
        summary = RunSummary(dry_run=dry_run)
        if self.primary is None and not dry_run:
            raise ConfigurationError("a primary provider is required outside dry runs")
        if not files:
            self.logger.info("intake_empty", intake_dir=str(self.settings.intake_dir))
            return summary

        async with self.session_factory() as session:
            ledger = await DedupLedger.load(CatalogRepository(session))
        self.logger.info("ingest_run_started", files=len(files), known_hashes=len(ledger), dry_run=dry_run)

        semaphore = asyncio.Semaphore(self.settings.ingest_concurrency)

        async def _bounded(path: Path) -> FileOutcome:
            async with semaphore:
                return await self.process_file(path, ledger, dry_run=dry_run)

        summary.outcomes = list(await asyncio.gather(*(_bounded(path) for path in files)))

        if summary.processed and not dry_run and self.settings.catalog_export_path:
            async with self.session_factory() as session:
                await export_from_session(session, self.settings.catalog_export_path)

        self.logger.info(
            "ingest_run_complete",
            processed=summary.processed,
            duplicate=summary.duplicate,
            failed=summary.failed,
            dry_run=dry_run,
        )
        return summary

    async def process_file(self, path: Path, ledger: DedupLedger, *, dry_run: bool = False) -> FileOutcome:
        outcome = FileOutcome(path=path)
        log = self.logger.bind(file=path.name)

        try:
            fingerprint = await asyncio.to_thread(fingerprint_file, path)
        except FingerprintError as exc:
            log.warning("ingest_file_unreadable", error=str(exc))
            return self._finish(outcome, Disposition.failed, dry_run, error=str(exc))
        outcome.content_hash = fingerprint.value
        outcome.stage = Stage.fingerprinted
        log = log.bind(content_hash=fingerprint.value)

        async with self._catalog_lock:
            claimed = ledger.claim(fingerprint.value)
        if not claimed:
            log.info("ingest_file_duplicate")
            outcome.stage = Stage.duplicate
            return self._finish(outcome, Disposition.duplicate, dry_run)
        outcome.stage = Stage.deduped_unique

        try:
            outcome.media = await asyncio.to_thread(
                probe_media,
                path,
                timeout_s=self.settings.probe_timeout_s,
            )
            outcome.stage = Stage.metadata_extracted
            if dry_run:
                log.info("ingest_file_would_publish", duration_s=outcome.media.duration_s)
                return self._finish(outcome, Disposition.processed, dry_run)

            derivatives = await generate_derivatives(
                path,
                fingerprint.value,
                self.settings.preview_dir,
                placeholder_mode=self.settings.placeholder_mode,
                preview_enabled=self.settings.preview_enabled,
                preview_height=self.settings.preview_height,
                timeout_s=self.settings.transcode_timeout_s,
            )
            outcome.stage = Stage.derivatives_generated

            published = await asyncio.wait_for(
                publish(path, self.primary, self.secondaries),  # type: ignore[arg-type]
                timeout=self.settings.upload_timeout_s + 2 * self.settings.provider_timeout_s,
            )
            outcome.stage = Stage.published

            record = self._build_record(path, fingerprint.value, outcome.media, derivatives.placeholder, derivatives.preview_ref, published)
            async with self._catalog_lock:
                async with self.session_factory() as session:
                    await CatalogRepository(session).add(record)
                ledger.commit(fingerprint.value)
            outcome.record_id = record.id
            outcome.stage = Stage.cataloged
        except (ReelcastError, SQLAlchemyError, asyncio.TimeoutError) as exc:
            ledger.release(fingerprint.value)
            log.warning("ingest_file_failed", stage=outcome.stage.value, error=str(exc) or type(exc).__name__)
            return self._finish(outcome, Disposition.failed, dry_run, error=str(exc) or type(exc).__name__)
        except Exception as exc:  # per-file isolation boundary
            ledger.release(fingerprint.value)
            log.exception("ingest_file_crashed", stage=outcome.stage.value)
            return self._finish(outcome, Disposition.failed, dry_run, error=repr(exc))

        log.info(
            "ingest_file_cataloged",
            record_id=record.id,
            remote_state=record.remote_state.value,
            providers=sorted(record.provider_refs),
        )
        return self._finish(outcome, Disposition.processed, dry_run)

    def _build_record(
        self,
        path: Path,
        content_hash: str,
        media: MediaAttributes,
        placeholder: str,
        preview_ref: Optional[str],
        published: PublishOutcome,
    ) -> AssetRecord:
        now = datetime.now(timezone.utc)
        state = RemoteState.preparing if published.primary_asset_id else RemoteState.uploading
        return AssetRecord(
            id=uuid4().hex,
            content_hash=content_hash,
            title=derive_title(path.name),
            source_file=path.name,
            provider_refs=published.provider_refs(),
            playback_ref=None,
            placeholder=placeholder,
            preview_ref=preview_ref,
            source_ref=read_provenance(path),
            duration_s=media.duration_s,
            width=media.width,
            height=media.height,
            size_bytes=media.size_bytes,
            remote_state=state,
            created_at=now,
            updated_at=now,
        )

    def _finish(
        self,
        outcome: FileOutcome,
        disposition: Disposition,
        dry_run: bool,
        *,
        error: Optional[str] = None,
    ) -> FileOutcome:
        outcome.disposition = disposition
        if disposition is Disposition.failed:
            # Last stage reached before the failure.
            outcome.failed_at = outcome.stage
            outcome.stage = Stage.failed
            outcome.error = error
        if not dry_run:
            outcome.destination = self._relocate(outcome.path, disposition)
        return outcome

    def _relocate(self, path: Path, disposition: Disposition) -> Optional[Path]:
        target_dir = {
            Disposition.processed: self.settings.processed_path,
            Disposition.duplicate: self.settings.duplicates_path,
            Disposition.failed: self.settings.failed_path,
        }[disposition]
        sidecar = provenance_path_for(path)
        try:
            target_dir.mkdir(parents=True, exist_ok=True)
            destination = unique_destination(target_dir, path.name)
            shutil.move(str(path), str(destination))
            if sidecar.exists():
                shutil.move(str(sidecar), str(provenance_path_for(destination)))
        except OSError as exc:
            self.logger.error("relocation_failed", file=path.name, disposition=disposition.value, error=str(exc))
            return None
        return destination


__all__ = [
    "Disposition",
    "FileOutcome",
    "IngestOrchestrator",
    "RunSummary",
    "Stage",
    "derive_title",
    "discover_intake",
    "preflight",
]
