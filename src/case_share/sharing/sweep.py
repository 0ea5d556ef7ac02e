"""Periodic purge of latent-expired invites.

Expired rows are already invisible to ``list_pending`` and rejected by
``redeem``; the sweep only keeps the table small. Disabled when the
interval is 0.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

from case_share.db.errors import STORE_ERRORS
from case_share.observability import get_logger
from case_share.observability.metrics import record_purge

from .invites import InviteLedger

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class SweepReport:
    purged: int = 0
    failed: bool = False


class InviteSweeper:
    def __init__(self, ledger: InviteLedger, interval_seconds: float) -> None:
        self._ledger = ledger
        self._interval = interval_seconds
        self._task: asyncio.Task | None = None

    @property
    def enabled(self) -> bool:
        return self._interval > 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def sweep_once(self) -> SweepReport:
        try:
            purged = await self._ledger.purge_expired()
        except STORE_ERRORS as exc:
            logger.warning('invite_sweep_failed', error=str(exc))
            return SweepReport(failed=True)
        record_purge(purged)
        return SweepReport(purged=purged)

    async def run_forever(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            await self.sweep_once()

    def start(self) -> None:
        """Start the background loop if enabled and not already running."""
        if not self.enabled or self.running:
            return
        self._task = asyncio.create_task(self.run_forever())
        logger.info('invite_sweep_started', interval_seconds=self._interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
