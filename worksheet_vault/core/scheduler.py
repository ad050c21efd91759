"""
Debounced auto-save for worksheet documents.
Coalesces bursts of edits into one gateway write after a quiet period, with manual flush and safe disposal.
"""

import asyncio
import copy
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Set

from util.logging import logger

from .config import AUTOSAVE_ENABLED, get_autosave_idle_seconds, get_debounce_seconds
from .gateway import PersistenceGateway
from .schema import RecordKey, WorksheetRecord


class SaveScheduler:
    """
    Per-record debounce engine.

    States: idle -> pending (timer armed) -> saving -> idle. Every new snapshot
    while pending re-arms the timer; flush_now goes straight to saving.

    The first snapshot observed is the initial load of saved data and never
    schedules a write. The timer always writes the snapshot held in the
    latest-snapshot slot when it fires, so edits made during the quiet period
    are coalesced, never lost.

    All state transitions run on the event loop thread; no locks are needed.
    """

    def __init__(self, gateway: PersistenceGateway, key: RecordKey,
                 debounce_ms: Optional[int] = None,
                 enabled: Optional[bool] = None,
                 on_start: Optional[Callable[[], None]] = None,
                 on_success: Optional[Callable[[datetime], None]] = None,
                 on_error: Optional[Callable[[Exception], None]] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.gateway = gateway
        self.key = key
        self.debounce_seconds = get_debounce_seconds() if debounce_ms is None else debounce_ms / 1000.0
        self._enabled = AUTOSAVE_ENABLED if enabled is None else enabled
        self.on_start = on_start
        self.on_success = on_success
        self.on_error = on_error

        # Latest-snapshot slot, read by the timer at fire time
        self._latest: Optional[Dict[str, Any]] = None
        self._seen_snapshot = False

        self._timer: Optional[asyncio.TimerHandle] = None
        self._in_flight: Set[asyncio.Task] = set()
        self._disposed = False
        self._clock = clock
        self.last_activity = clock()

        self.last_error: Optional[Exception] = None
        self.last_saved_at: Optional[datetime] = None
        self.last_record: Optional[WorksheetRecord] = None
        self.write_count = 0

    @property
    def enabled(self) -> bool:
        return self._enabled

    @enabled.setter
    def enabled(self, value: bool) -> None:
        self._enabled = value
        if not value:
            self._cancel_timer()

    @property
    def is_saving(self) -> bool:
        return bool(self._in_flight)

    @property
    def is_pending(self) -> bool:
        return self._timer is not None

    @property
    def is_error(self) -> bool:
        return self.last_error is not None

    @property
    def is_idle(self) -> bool:
        return not self.is_pending and not self.is_saving

    @property
    def disposed(self) -> bool:
        return self._disposed

    @property
    def latest_snapshot(self) -> Optional[Dict[str, Any]]:
        return self._latest

    def schedule_save(self, document: Dict[str, Any]) -> None:
        """
        Observe a new document snapshot.

        The first snapshot is treated as the initial load and only fills the slot.
        Later snapshots (re)arm the quiet-period timer when enabled.
        """
        if self._disposed:
            raise RuntimeError(f"Scheduler for worksheet '{self.key.record_key}' is disposed")

        self._latest = document
        self.touch()

        if not self._seen_snapshot:
            self._seen_snapshot = True
            logger.log_scheduler_event("initial_snapshot", self.key.record_key)
            return

        if self._enabled:
            self._arm()

    def flush_now(self, completed: bool = False, document: Optional[Dict[str, Any]] = None) -> asyncio.Task:
        """
        Cancel any armed timer and write the latest snapshot immediately.

        Args:
            completed: Store the record as completed ("save and mark complete")
            document: Optional snapshot to place in the slot before writing

        Returns:
            asyncio.Task resolving to the written WorksheetRecord. Awaiting it
            re-raises a gateway error; the error is also reported via on_error.
        """
        if self._disposed:
            raise RuntimeError(f"Scheduler for worksheet '{self.key.record_key}' is disposed")

        if document is not None:
            self._latest = document
            self._seen_snapshot = True

        self._cancel_timer()
        self.touch()
        return self._start_write(completed)

    def dispose(self) -> None:
        """Cancel the armed timer. Writes already in flight finish but are no longer reported."""
        self._cancel_timer()
        self._disposed = True
        logger.log_scheduler_event("disposed", self.key.record_key, {"in_flight": len(self._in_flight)})

    def touch(self) -> None:
        """Record activity so the registry keeps this scheduler alive."""
        self.last_activity = self._clock()

    async def wait_idle(self) -> None:
        """Wait until every in-flight write has resolved."""
        while self._in_flight:
            await asyncio.wait(list(self._in_flight))

    def status(self) -> Dict[str, Any]:
        return {
            "is_saving": self.is_saving,
            "is_pending": self.is_pending,
            "is_error": self.is_error,
            "last_error": str(self.last_error) if self.last_error else None,
            "last_saved_at": self.last_saved_at,
        }

    def _arm(self) -> None:
        self._cancel_timer()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self.debounce_seconds, self._on_timer)
        logger.log_scheduler_event("armed", self.key.record_key, {"quiet_period_sec": self.debounce_seconds})

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_timer(self) -> None:
        self._timer = None
        if self._disposed:
            return
        self._start_write(completed=False)

    def _start_write(self, completed: bool) -> asyncio.Task:
        snapshot = copy.deepcopy(self._latest) if self._latest is not None else {}

        self._notify(self.on_start)
        logger.log_scheduler_event("saving", self.key.record_key, {"completed": completed})

        task = asyncio.get_running_loop().create_task(self._perform_write(snapshot, completed))
        self._in_flight.add(task)
        task.add_done_callback(self._on_write_done)
        return task

    async def _perform_write(self, snapshot: Dict[str, Any], completed: bool) -> WorksheetRecord:
        self.write_count += 1
        try:
            record = await self.gateway.write(self.key, snapshot, completed)
        except Exception as e:
            if not self._disposed:
                self.last_error = e
                logger.log_scheduler_event("error", self.key.record_key, {"error_type": type(e).__name__})
                self._notify(self.on_error, e)
            raise

        if not self._disposed:
            saved_at = datetime.now(timezone.utc)
            self.last_error = None
            self.last_saved_at = saved_at
            self.last_record = record
            logger.log_scheduler_event("saved", self.key.record_key, {"optimistic": record.optimistic})
            self._notify(self.on_success, saved_at)
        return record

    def _on_write_done(self, task: asyncio.Task) -> None:
        self._in_flight.discard(task)
        self.touch()
        # Mark the exception retrieved; it is already reported through on_error
        if not task.cancelled():
            task.exception()

    def _notify(self, callback: Optional[Callable], *args) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception as e:
            logger.warning(f"Auto-save callback {callback!r} failed for worksheet '{self.key.record_key}': {e}")


class AutoSaveRegistry:
    """
    Holds one SaveScheduler per record key, so each key has at most one armed timer.

    Schedulers with no armed timer and no write in flight are dropped once they
    have been inactive for idle_after seconds; the pass runs on every open()
    and can be called directly through prune_idle(). A dropped key is reopened
    from the stored document.
    """

    def __init__(self, gateway: PersistenceGateway, debounce_ms: Optional[int] = None,
                 enabled: Optional[bool] = None, idle_after: Optional[float] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.gateway = gateway
        self.debounce_ms = debounce_ms
        self.enabled = enabled
        self.idle_after = get_autosave_idle_seconds() if idle_after is None else idle_after
        self._clock = clock
        self._schedulers: Dict[RecordKey, SaveScheduler] = {}

    def get(self, key: RecordKey) -> Optional[SaveScheduler]:
        return self._schedulers.get(key)

    async def open(self, key: RecordKey) -> SaveScheduler:
        """
        Get the scheduler for a key, creating it on first use.

        A new scheduler is seeded with the stored document as its initial
        snapshot, so the next schedule_save is treated as a user edit.
        """
        self.prune_idle()

        scheduler = self._schedulers.get(key)
        if scheduler is not None and not scheduler.disposed:
            scheduler.touch()
            return scheduler

        existing = await self.gateway.read(key)

        # Another caller may have opened the key while the read was suspended
        scheduler = self._schedulers.get(key)
        if scheduler is not None and not scheduler.disposed:
            scheduler.touch()
            return scheduler

        scheduler = SaveScheduler(self.gateway, key, debounce_ms=self.debounce_ms, enabled=self.enabled,
                                  clock=self._clock)
        scheduler.schedule_save(existing.document if existing else {})
        self._schedulers[key] = scheduler
        return scheduler

    def prune_idle(self) -> List[RecordKey]:
        """Dispose and drop schedulers that have been idle longer than idle_after."""
        cutoff = self._clock() - self.idle_after
        expired = [k for k, s in self._schedulers.items() if s.is_idle and s.last_activity <= cutoff]
        for key in expired:
            self.dispose(key)
        if expired:
            logger.debug(f"Dropped {len(expired)} idle auto-save schedulers, {len(self._schedulers)} remain")
        return expired

    def dispose(self, key: RecordKey) -> None:
        scheduler = self._schedulers.pop(key, None)
        if scheduler is not None:
            scheduler.dispose()

    def dispose_owner(self, owner_id: str, group_key: Optional[int] = None) -> None:
        for key in [k for k in self._schedulers
                    if k.owner_id == owner_id and (group_key is None or k.group_key == group_key)]:
            self.dispose(key)

    def dispose_all(self) -> None:
        for key in list(self._schedulers):
            self.dispose(key)

    def __len__(self) -> int:
        return len(self._schedulers)
