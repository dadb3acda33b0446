"""
Sync Engine: reconciles the Local Store with the server's notice/feedback mirror.

A sync pushes both local collections, pulls the mirror's copies back and
overwrites the local ones with them. Reconciliation is last-writer-wins at the
granularity of a whole collection; there is no per-item merge.

Triggers:
  * manual `sync_data()` calls,
  * a connectivity transition offline -> online (after a short settle delay),
  * a periodic timer that only recomputes the pending-change count.
"""

import asyncio
import logging
from datetime import datetime
from typing import Awaitable, Callable, List, Optional, Protocol, Set

from pydantic import BaseModel

from .config import (CONNECTIVITY_PROBE_SECONDS, SYNC_AUTO_DELAY_SECONDS,
                     SYNC_PENDING_INTERVAL_SECONDS, as_utc, now_utc)
from .errors import OfflineError
from .local_store import FEEDBACK_KEY, NOTICES_KEY, LocalStore
from .models import Notice, VoiceFeedback

logger = logging.getLogger(__name__)

SYNC_FAILED_MESSAGE = "Sync failed. Please try again."
SYNC_BUSY_MESSAGE = "Sync already in progress"


class RemoteMirror(Protocol):
    async def push_notices(self, notices: List[Notice]) -> None: ...
    async def push_feedback(self, feedback: List[VoiceFeedback]) -> None: ...
    async def fetch_notices(self) -> List[Notice]: ...
    async def fetch_feedback(self) -> List[VoiceFeedback]: ...


class SyncStatus(BaseModel):
    last_sync_attempt: Optional[datetime] = None
    last_successful_sync: Optional[datetime] = None
    is_syncing: bool = False
    pending_changes: int = 0
    error: Optional[str] = None


class SyncResult(BaseModel):
    success: bool
    timestamp: Optional[datetime] = None
    error: Optional[str] = None


# ---------------------------------------------------------------------------
# Connectivity
# ---------------------------------------------------------------------------
class ConnectivityMonitor:
    """Online/offline flag with transition listeners and an optional health probe."""

    def __init__(self, online: bool = True, probe: Optional[Callable[[], Awaitable[bool]]] = None):
        self._online = online
        self._probe = probe
        self._listeners: List[Callable[[bool], None]] = []
        self._task: Optional[asyncio.Task] = None

    @property
    def is_online(self) -> bool:
        return self._online

    def subscribe(self, listener: Callable[[bool], None]) -> None:
        self._listeners.append(listener)

    def unsubscribe(self, listener: Callable[[bool], None]) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def set_online(self, online: bool) -> None:
        if online == self._online:
            return
        self._online = online
        logger.info("Connectivity changed: %s", "online" if online else "offline")
        for listener in list(self._listeners):
            listener(online)

    async def probe(self) -> bool:
        if self._probe is None:
            return self._online
        try:
            ok = bool(await self._probe())
        except Exception as e:
            logger.warning("Connectivity probe failed: %s", e)
            ok = False
        self.set_online(ok)
        return ok

    async def _watch(self, interval: float) -> None:
        while True:
            await self.probe()
            await asyncio.sleep(interval)

    def start(self, interval: float = CONNECTIVITY_PROBE_SECONDS) -> None:
        if self._probe is not None and self._task is None:
            self._task = asyncio.get_running_loop().create_task(self._watch(interval))

    async def stop(self) -> None:
        await _cancel(self._task)
        self._task = None


async def _cancel(task: Optional[asyncio.Task]) -> None:
    if task is None or task.done():
        return
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass


async def _landed(write: asyncio.Future) -> bool:
    try:
        await write
    except Exception as e:
        logger.error("Local overwrite failed: %s", e)
        return False
    return True


# ---------------------------------------------------------------------------
# Sync engine
# ---------------------------------------------------------------------------
class SyncEngine:
    def __init__(self, store: LocalStore, mirror: RemoteMirror, monitor: ConnectivityMonitor,
                 auto_sync_delay: float = SYNC_AUTO_DELAY_SECONDS,
                 pending_interval: float = SYNC_PENDING_INTERVAL_SECONDS,
                 clock: Callable[[], datetime] = now_utc):
        self.store = store
        self.mirror = mirror
        self.monitor = monitor
        self.auto_sync_delay = auto_sync_delay
        self.pending_interval = pending_interval
        self.clock = clock
        self.status = SyncStatus()
        self._gate = asyncio.Lock()
        self._settling: Optional[asyncio.Task] = None
        self._auto_syncs: Set[asyncio.Task] = set()
        self._periodic: Optional[asyncio.Task] = None
        self._synced_listeners: List[Callable[[], None]] = []

    # -- pending changes -----------------------------------------------------
    def calculate_pending_changes(self) -> int:
        """Items created after the last successful sync (all of them if none)."""
        last = self.status.last_successful_sync
        items = [n.created_at for n in self.store.notices()] + [f.created_at for f in self.store.feedback()]
        if last is None:
            return len(items)
        last = as_utc(last)
        return sum(1 for created in items if as_utc(created) > last)

    def refresh_pending(self) -> int:
        self.status.pending_changes = self.calculate_pending_changes()
        return self.status.pending_changes

    def on_synced(self, listener: Callable[[], None]) -> None:
        """Called after local collections were replaced by a successful sync."""
        self._synced_listeners.append(listener)

    # -- sync ----------------------------------------------------------------
    @property
    def is_syncing(self) -> bool:
        return self._gate.locked()

    async def sync_data(self) -> SyncResult:
        if self._gate.locked():
            logger.info("Sync requested while another is running; rejected")
            return SyncResult(success=False, error=SYNC_BUSY_MESSAGE)
        async with self._gate:
            if not self.monitor.is_online:
                err = OfflineError()
                self.status.last_sync_attempt = self.clock()
                self.status.error = err.message
                logger.info("Sync skipped: %s", err.message)
                return SyncResult(success=False, error=err.message)

            self.status.is_syncing = True
            self.status.last_sync_attempt = self.clock()
            self.status.error = None
            loop = asyncio.get_running_loop()
            write = None
            try:
                local_notices = await loop.run_in_executor(None, self.store.notices)
                local_feedback = await loop.run_in_executor(None, self.store.feedback)

                await self.mirror.push_notices(local_notices)
                await self.mirror.push_feedback(local_feedback)

                remote_notices = await self.mirror.fetch_notices()
                remote_feedback = await self.mirror.fetch_feedback()

                write = loop.run_in_executor(None, self.store.save_many, {
                    NOTICES_KEY: [n.model_dump(mode="json") for n in remote_notices],
                    FEEDBACK_KEY: [f.model_dump(mode="json") for f in remote_feedback],
                })
                await asyncio.shield(write)
            except asyncio.CancelledError:
                # An overwrite handed to the executor runs to completion regardless
                if write is None or not await _landed(write):
                    logger.warning("Sync cancelled before local data was replaced")
                    self.status.error = SYNC_FAILED_MESSAGE
                    raise
                self._mark_synced(len(remote_notices), len(remote_feedback))
                self._notify_synced()
                raise
            except Exception as e:
                logger.error("Sync failed: %s", e)
                self.status.error = SYNC_FAILED_MESSAGE
                return SyncResult(success=False, error=getattr(e, "message", None) or str(e) or SYNC_FAILED_MESSAGE)
            finally:
                self.status.is_syncing = False

            synced_at = self._mark_synced(len(remote_notices), len(remote_feedback))
        self._notify_synced()
        return SyncResult(success=True, timestamp=synced_at)

    def _mark_synced(self, notices: int, feedback: int) -> datetime:
        synced_at = self.clock()
        self.status.last_successful_sync = synced_at
        self.status.pending_changes = 0
        self.status.error = None
        logger.info("Sync complete: %d notices, %d feedback items", notices, feedback)
        return synced_at

    def _notify_synced(self) -> None:
        for listener in list(self._synced_listeners):
            try:
                listener()
            except Exception as e:
                logger.error("Post-sync listener failed: %s", e)

    # -- triggers ------------------------------------------------------------
    def _on_connectivity(self, online: bool) -> None:
        # Only an auto-sync still in its settle delay is abandoned; a running sync finishes
        if self._settling is not None:
            self._settling.cancel()
            self._settling = None
        if online:
            task = asyncio.get_running_loop().create_task(self._delayed_sync())
            self._settling = task
            self._auto_syncs.add(task)
            task.add_done_callback(self._auto_syncs.discard)

    async def _delayed_sync(self) -> None:
        # Wait out flaky reconnects before syncing
        try:
            await asyncio.sleep(self.auto_sync_delay)
        finally:
            if self._settling is asyncio.current_task():
                self._settling = None
        result = await self.sync_data()
        if not result.success:
            logger.warning("Automatic sync did not complete: %s", result.error)

    async def _pending_loop(self) -> None:
        while True:
            await asyncio.sleep(self.pending_interval)
            self.refresh_pending()

    def start(self) -> None:
        self.monitor.subscribe(self._on_connectivity)
        self.refresh_pending()
        if self._periodic is None:
            self._periodic = asyncio.get_running_loop().create_task(self._pending_loop())

    async def stop(self) -> None:
        self.monitor.unsubscribe(self._on_connectivity)
        self._settling = None
        for task in list(self._auto_syncs):
            await _cancel(task)
        await _cancel(self._periodic)
        self._auto_syncs.clear()
        self._periodic = None
