"""
Debounced draft auto-save.

Every wizard change calls `DraftAutoSaver.schedule()`. The trailing timer
restarts on each call, so a burst of edits results in one save fired
`delay` seconds after the last edit. Fired snapshots go through a
single-slot queue:

    timer fires → _pending = snapshot → _drain() (one task at a time)

While a save is in flight a newer snapshot replaces any queued one, and is
written once the in-flight save returns. An older snapshot can therefore
never land after a newer one.

Save failures are advisory: they are logged and surfaced as SaveStatus.ERROR,
never raised into the wizard.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Dict, Optional

from portal.config import settings
from portal.wizard.state import RegistrationData

logger = logging.getLogger(__name__)

Persister = Callable[[RegistrationData, int], Awaitable[bool]]


class SaveStatus(str, Enum):
    IDLE   = "idle"
    SAVING = "saving"
    SAVED  = "saved"
    ERROR  = "error"


SAVE_STATUS_LABELS = {
    SaveStatus.IDLE:   "",
    SaveStatus.SAVING: "💾 Saving…",
    SaveStatus.SAVED:  "✅ Draft saved",
    SaveStatus.ERROR:  "⚠️ Draft not saved",
}


@dataclass(frozen=True)
class _Snapshot:
    version: int
    data: RegistrationData
    step: int


class DraftAutoSaver:
    """
    Per-session auto-saver.

    Parameters
    ----------
    persist   : coroutine (data, step) → bool writing the draft
    delay     : debounce window in seconds
    saved_ttl : seconds before SAVED reverts to IDLE
    on_status : optional callback invoked on every status change
    """

    def __init__(
        self,
        persist: Persister,
        delay: Optional[float] = None,
        saved_ttl: Optional[float] = None,
        on_status: Optional[Callable[[SaveStatus], None]] = None,
    ) -> None:
        self._persist  = persist
        self.delay     = settings.AUTOSAVE_DELAY if delay is None else delay
        self.saved_ttl = settings.SAVED_STATUS_TTL if saved_ttl is None else saved_ttl
        self.on_status = on_status

        self.status: SaveStatus = SaveStatus.IDLE
        self.saved_version = 0            # last version written successfully

        self._version = 0
        self._latest:  Optional[_Snapshot]     = None
        self._pending: Optional[_Snapshot]     = None
        self._timer:   Optional[asyncio.Task]  = None
        self._worker:  Optional[asyncio.Task]  = None
        self._revert:  Optional[asyncio.Task]  = None

    # ── Public API ───────────────────────────────────────────────────────────

    def schedule(self, data: RegistrationData, step: int) -> int:
        """Queue a save of `data` after the debounce window. Returns its version."""
        self._version += 1
        self._latest = _Snapshot(self._version, data.model_copy(deep=True), int(step))
        self._cancel_timer()
        self._timer = asyncio.create_task(self._fire_later(self._latest))
        return self._version

    async def flush(self) -> None:
        """Write the latest scheduled snapshot now and wait for the queue to drain."""
        if self._timer is not None and not self._timer.done():
            self._cancel_timer()
            if self._latest is not None:
                self._enqueue(self._latest)
        await self.wait_idle()

    async def wait_idle(self) -> None:
        if self._worker is not None and not self._worker.done():
            await asyncio.shield(self._worker)

    def cancel(self) -> None:
        """Drop the pending timer and any queued snapshot; an in-flight save completes."""
        self._cancel_timer()
        self._pending = None
        if self._revert is not None and not self._revert.done():
            self._revert.cancel()

    @property
    def has_pending(self) -> bool:
        return (self._timer is not None and not self._timer.done()) or self._pending is not None

    # ── Internals ────────────────────────────────────────────────────────────

    def _cancel_timer(self) -> None:
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = None

    async def _fire_later(self, snapshot: _Snapshot) -> None:
        await asyncio.sleep(self.delay)
        self._enqueue(snapshot)

    def _enqueue(self, snapshot: _Snapshot) -> None:
        self._pending = snapshot
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._drain())

    async def _drain(self) -> None:
        while self._pending is not None:
            snapshot, self._pending = self._pending, None
            await self._save(snapshot)

    async def _save(self, snapshot: _Snapshot) -> None:
        self._set_status(SaveStatus.SAVING)
        try:
            ok = await self._persist(snapshot.data, snapshot.step)
        except Exception as e:
            logger.warning("Draft auto-save v%d failed: %s", snapshot.version, e)
            ok = False

        if not ok:
            self._set_status(SaveStatus.ERROR)
            return

        self.saved_version = max(self.saved_version, snapshot.version)
        if self._pending is None:
            self._set_status(SaveStatus.SAVED)
            self._revert = asyncio.create_task(self._revert_later())

    async def _revert_later(self) -> None:
        await asyncio.sleep(self.saved_ttl)
        self._revert = None
        if self.status == SaveStatus.SAVED:
            self._set_status(SaveStatus.IDLE)

    def _set_status(self, status: SaveStatus) -> None:
        if self._revert is not None and not self._revert.done() and status != SaveStatus.SAVED:
            self._revert.cancel()
        self.status = status
        if self.on_status is not None:
            try:
                self.on_status(status)
            except Exception as e:
                logger.warning("Auto-save status callback failed: %s", e)


class AutoSaverRegistry:
    """One saver per Telegram user; savers are cancelled when the user leaves the wizard."""

    def __init__(self) -> None:
        self._savers: Dict[int, DraftAutoSaver] = {}

    def get(self, user_id: int) -> Optional[DraftAutoSaver]:
        return self._savers.get(user_id)

    def get_or_create(self, user_id: int, factory: Callable[[], DraftAutoSaver]) -> DraftAutoSaver:
        saver = self._savers.get(user_id)
        if saver is None:
            saver = self._savers[user_id] = factory()
        return saver

    def discard(self, user_id: int) -> None:
        saver = self._savers.pop(user_id, None)
        if saver is not None:
            saver.cancel()

    def status_label(self, user_id: int) -> str:
        saver = self._savers.get(user_id)
        return SAVE_STATUS_LABELS[saver.status] if saver else ""

    def cancel_all(self) -> None:
        for user_id in list(self._savers):
            self.discard(user_id)


savers = AutoSaverRegistry()
