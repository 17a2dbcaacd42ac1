from __future__ import annotations

import asyncio
import os
import socket
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from reelcast.core.config import Settings
from reelcast.core.errors import ProviderError
from reelcast.core.logging import get_logger
from reelcast.db.models import AssetRecord, RemoteState
from reelcast.providers import TranscodeState, VideoProvider

from .catalog import CatalogLease, CatalogRepository, export_from_session

LEASE_NAME = "reconciler"


@dataclass(slots=True)
class PassSummary:
    checked: int = 0
    ready: int = 0
    preparing: int = 0
    uploading: int = 0
    errored: int = 0
    unchanged: int = 0

    @property
    def pending(self) -> int:
        return self.preparing + self.uploading + self.unchanged


@dataclass(slots=True)
class ReconcileReport:
    passes: List[PassSummary] = field(default_factory=list)

    @property
    def attempts(self) -> int:
        return len(self.passes)

    @property
    def pending(self) -> int:
        return self.passes[-1].pending if self.passes else 0


class StatusReconciler:
    """Advances non-terminal catalog records through the primary provider's transcode lifecycle.

    Every pass starts from the persisted catalog, so the reconciler can be stopped and
    started again from a fresh process at any point.
    """

    def __init__(
        self,
        settings: Settings,
        session_factory: async_sessionmaker[AsyncSession],
        provider: VideoProvider,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        holder: Optional[str] = None,
    ):
        self.settings = settings
        self.session_factory = session_factory
        self.provider = provider
        self.sleep = sleep
        self.holder = holder or f"{socket.gethostname()}:{os.getpid()}"
        self.logger = get_logger(component="reconciler", provider=provider.name)

    async def run(
        self,
        *,
        continuous: bool = False,
        max_attempts: Optional[int] = None,
        delay_s: Optional[float] = None,
    ) -> ReconcileReport:
        attempts = (max_attempts or self.settings.reconcile_max_attempts) if continuous else 1
        delay = self.settings.reconcile_delay_s if delay_s is None else delay_s
        report = ReconcileReport()

        async with self.session_factory() as lease_session:
            async with CatalogLease(lease_session, LEASE_NAME, self.holder, ttl_s=self.settings.reconcile_lock_ttl_s) as lease:
                for attempt in range(1, attempts + 1):
                    await lease.renew()
                    summary = await self.run_pass(lease)
                    report.passes.append(summary)
                    self.logger.info("reconcile_attempt_complete", attempt=attempt, max_attempts=attempts, pending=summary.pending)
                    if summary.pending == 0 or attempt == attempts:
                        break
                    await self.sleep(delay)

        if report.pending:
            self.logger.info("reconcile_budget_exhausted", pending=report.pending, attempts=report.attempts)
        return report

    async def run_pass(self, lease: Optional[CatalogLease] = None) -> PassSummary:
        """Query the provider once per pending record and persist the results in one commit.

        With a ``lease``, ownership is re-checked in the same transaction as the record
        updates; a pass whose lease was taken over meanwhile writes nothing and raises
        ``ReconcilerBusyError``.
        """
        summary = PassSummary()
        async with self.session_factory() as session:
            repository = CatalogRepository(session)
            records = await repository.pending()
            for record in records:
                summary.checked += 1
                await self._reconcile_record(record, summary)
            if lease is not None:
                await lease.renew(session)
            # One write per pass, not per record.
            await session.commit()
            if self.settings.catalog_export_path and summary.checked:
                await export_from_session(session, self.settings.catalog_export_path)

        self.logger.info(
            "reconcile_pass_complete",
            checked=summary.checked,
            ready=summary.ready,
            preparing=summary.preparing,
            uploading=summary.uploading,
            errored=summary.errored,
            unchanged=summary.unchanged,
        )
        return summary

    async def _reconcile_record(self, record: AssetRecord, summary: PassSummary) -> None:
        log = self.logger.bind(record_id=record.id, content_hash=record.content_hash)
        ref = record.provider_ref(self.provider.name)
        try:
            asset_id = ref.get("asset_id")
            if not asset_id:
                session_id = ref.get("session_id")
                if not session_id:
                    log.warning("reconcile_record_missing_session")
                    summary.unchanged += 1
                    return
                upload = await self.provider.resolve_upload(session_id)
                if upload.failed:
                    record.advance_state(RemoteState.errored)
                    log.warning("reconcile_upload_failed", detail=upload.detail)
                    summary.errored += 1
                    return
                if not upload.asset_id:
                    record.advance_state(RemoteState.uploading)
                    log.info("reconcile_upload_pending")
                    summary.uploading += 1
                    return
                asset_id = upload.asset_id
                record.set_provider_asset_id(self.provider.name, asset_id)
                log.info("reconcile_asset_assigned", asset_id=asset_id)

            status = await self.provider.get_asset_status(asset_id)
        except (ProviderError, httpx.HTTPError) as exc:
            log.warning("reconcile_query_failed", error=str(exc))
            summary.unchanged += 1
            return

        if status.state is TranscodeState.ready and status.playback_ref:
            record.advance_state(RemoteState.ready, playback_ref=status.playback_ref)
            log.info("reconcile_ready", playback_ref=status.playback_ref)
            summary.ready += 1
        elif status.state is TranscodeState.failed:
            record.advance_state(RemoteState.errored)
            log.warning("reconcile_errored", detail=status.detail)
            summary.errored += 1
        else:
            record.advance_state(RemoteState.preparing)
            log.info("reconcile_preparing", detail=status.detail)
            summary.preparing += 1


__all__ = ["LEASE_NAME", "PassSummary", "ReconcileReport", "StatusReconciler"]
