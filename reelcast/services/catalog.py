from __future__ import annotations

import json
import os
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Iterable, Optional, Sequence

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from reelcast.core.errors import ReconcilerBusyError
from reelcast.core.logging import get_logger
from reelcast.db.models import AssetRecord, CatalogLock, RemoteState

NON_TERMINAL_STATES = (RemoteState.uploading, RemoteState.preparing)


class CatalogRepository:
    """Record-oriented access to the asset catalog.

    Records are only ever inserted or updated field by field; nothing here deletes or
    rewrites the catalog wholesale.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def content_hashes(self) -> set[str]:
        result = await self.session.execute(select(AssetRecord.content_hash))
        return set(result.scalars().all())

    async def by_hash(self, content_hash: str) -> Optional[AssetRecord]:
        stmt = select(AssetRecord).where(AssetRecord.content_hash == content_hash)
        return (await self.session.execute(stmt)).scalar_one_or_none()

    async def get(self, record_id: str) -> Optional[AssetRecord]:
        return await self.session.get(AssetRecord, record_id)

    async def list(self, *, state: Optional[RemoteState] = None) -> Sequence[AssetRecord]:
        stmt = select(AssetRecord).order_by(AssetRecord.created_at, AssetRecord.id)
        if state is not None:
            stmt = stmt.where(AssetRecord.remote_state == state)
        return (await self.session.execute(stmt)).scalars().all()

    async def pending(self) -> Sequence[AssetRecord]:
        stmt = (
            select(AssetRecord)
            .where(AssetRecord.remote_state.in_(NON_TERMINAL_STATES))
            .order_by(AssetRecord.created_at, AssetRecord.id)
        )
        return (await self.session.execute(stmt)).scalars().all()

    async def add(self, record: AssetRecord) -> AssetRecord:
        """Insert ``record`` and commit. A duplicate content hash raises ``IntegrityError``."""
        self.session.add(record)
        try:
            await self.session.commit()
        except IntegrityError:
            await self.session.rollback()
            raise
        return record


class DedupLedger:
    """In-memory view of cataloged content hashes plus the hashes claimed by this batch."""

    def __init__(self, known_hashes: Iterable[str] = ()):
        self._known: set[str] = set(known_hashes)
        self._claimed: set[str] = set()

    @classmethod
    async def load(cls, repository: CatalogRepository) -> "DedupLedger":
        return cls(await repository.content_hashes())

    def __len__(self) -> int:
        return len(self._known)

    def exists(self, content_hash: str) -> bool:
        return content_hash in self._known or content_hash in self._claimed

    def claim(self, content_hash: str) -> bool:
        """Reserve ``content_hash`` for the caller; ``False`` if it is known or already claimed."""
        if self.exists(content_hash):
            return False
        self._claimed.add(content_hash)
        return True

    def release(self, content_hash: str) -> None:
        self._claimed.discard(content_hash)

    def commit(self, content_hash: str) -> None:
        self._claimed.discard(content_hash)
        self._known.add(content_hash)


class CatalogLease:
    """Time-bounded named lock stored in the catalog database."""

    def __init__(self, session: AsyncSession, name: str, holder: str, *, ttl_s: int):
        self.session = session
        self.name = name
        self.holder = holder
        self.ttl = timedelta(seconds=ttl_s)
        self.logger = get_logger(component="catalog_lease", lease=name, holder=holder)

    async def acquire(self) -> None:
        now = datetime.now(timezone.utc)
        lock = await self.session.get(CatalogLock, self.name)
        if lock is not None:
            if lock.holder != self.holder and _aware(lock.expires_at) > now:
                raise ReconcilerBusyError(f"{self.name} lease held by {lock.holder} until {lock.expires_at}")
            if lock.holder != self.holder:
                self.logger.warning("lease_expired_taking_over", previous_holder=lock.holder)
            lock.holder = self.holder
            lock.acquired_at = now
            lock.expires_at = now + self.ttl
        else:
            self.session.add(CatalogLock(name=self.name, holder=self.holder, acquired_at=now, expires_at=now + self.ttl))
        try:
            await self.session.commit()
        except IntegrityError as exc:
            await self.session.rollback()
            raise ReconcilerBusyError(f"{self.name} lease acquired concurrently") from exc

    async def renew(self, session: Optional[AsyncSession] = None) -> None:
        """Push ``expires_at`` forward, or raise ReconcilerBusyError if another holder took over.

        Passing ``session`` renews inside that session's transaction without committing, so
        the caller's own writes land atomically with the ownership check.
        """
        owner = session or self.session
        stmt = (
            update(CatalogLock)
            .where(CatalogLock.name == self.name, CatalogLock.holder == self.holder)
            .values(expires_at=datetime.now(timezone.utc) + self.ttl)
            .execution_options(synchronize_session=False)
        )
        result = await owner.execute(stmt)
        if result.rowcount != 1:
            await owner.rollback()
            self.logger.warning("lease_lost")
            raise ReconcilerBusyError(f"{self.name} lease no longer held by {self.holder}")
        if session is None:
            await owner.commit()

    async def release(self) -> None:
        stmt = delete(CatalogLock).where(CatalogLock.name == self.name, CatalogLock.holder == self.holder)
        await self.session.execute(stmt.execution_options(synchronize_session=False))
        await self.session.commit()

    async def __aenter__(self) -> "CatalogLease":
        await self.acquire()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.release()


def record_to_document(record: AssetRecord) -> dict[str, Any]:
    """Shape a record the way the presentation layer reads it."""
    refs = record.provider_refs or {}
    return {
        "id": record.id,
        "title": record.title,
        "contentHash": record.content_hash,
        "providerRefs": {
            name: {"sessionId": ref.get("session_id"), "assetId": ref.get("asset_id")} for name, ref in refs.items()
        },
        "playbackRef": record.playback_ref,
        "placeholder": record.placeholder,
        "previewRef": record.preview_ref,
        "sourceRef": record.source_ref,
        "sourceFile": record.source_file,
        "mediaAttributes": {
            "duration": record.duration_s,
            "width": record.width,
            "height": record.height,
            "size": record.size_bytes,
        },
        "remoteState": RemoteState(record.remote_state).value,
        "createdAt": _isoformat(record.created_at),
    }


def export_catalog(records: Iterable[AssetRecord], path: Path) -> Path:
    """Atomically write ``{"videos": [...]}`` for the presentation layer."""
    document = {"videos": [record_to_document(record) for record in records]}
    path.parent.mkdir(parents=True, exist_ok=True)
    partial = path.with_name(f"{path.name}.tmp")
    partial.write_text(json.dumps(document, indent=2), encoding="utf-8")
    os.replace(partial, path)
    return path


async def export_from_session(session: AsyncSession, path: Path) -> Path:
    records = await CatalogRepository(session).list()
    return export_catalog(records, path)


def _aware(value: datetime) -> datetime:
    # SQLite drops tzinfo on round trip.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return _aware(value).isoformat().replace("+00:00", "Z")


__all__ = [
    "CatalogLease",
    "CatalogRepository",
    "DedupLedger",
    "NON_TERMINAL_STATES",
    "export_catalog",
    "export_from_session",
    "record_to_document",
]
