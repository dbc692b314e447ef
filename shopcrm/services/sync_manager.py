"""
Keeps the local store and the remote mirror converging.

Lifecycle: ``initialize()`` once at startup, a periodic push while the
process runs, live change events applied as they arrive, ``cleanup()`` on
shutdown. Nothing on the public surface raises; every operation returns a
``SyncResult``.

Conflict policy is remote-wins by id. There is no revision counter.
"""
import asyncio
import copy
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, NamedTuple, Optional

import structlog

from ..config import settings as app_settings
from ..db import RemoteBackend
from ..schemas.sync import RealtimeEvent, SyncResult, SyncStatus
from ..store.local_store import LocalStore, REPRESENTATIVE_COLLECTIONS, SETTINGS_KEY, SYNCED_COLLECTIONS
from .data_transform import from_remote
from .remote_gateway import NOT_CONFIGURED, RemoteGateways, SETTINGS_ID


logger = structlog.get_logger(__name__)

REPLACE = "replace"
MERGE = "merge"


class SyncState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    CONNECTION_FAILED = "connection_failed"
    IDLE = "idle"
    PUSHING = "pushing"
    PULLING = "pulling"
    CLEANED_UP = "cleaned_up"


class CollectionHandler(NamedTuple):
    insert: Callable[[Dict[str, Any]], None]
    update: Callable[[Dict[str, Any]], None]
    delete: Callable[[Dict[str, Any]], None]


def merge_collections(local: List[Dict[str, Any]], remote: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Remote records first (remote wins on id), then local records the remote does not have."""
    remote_ids = {r.get("id") for r in remote}
    merged = [copy.deepcopy(r) for r in remote]
    merged.extend(copy.deepcopy(r) for r in local if r.get("id") not in remote_ids)
    return merged


def remote_has_data(snapshot: Dict[str, Any]) -> bool:
    return any(snapshot.get(name) for name in REPRESENTATIVE_COLLECTIONS)


class SyncManager:
    def __init__(
        self,
        store: LocalStore,
        gateways: RemoteGateways,
        interval: Optional[float] = None,
        poll_interval: Optional[float] = None,
        auto_create_tables: Optional[bool] = None,
        retention_hours: Optional[float] = None,
    ):
        self.store = store
        self.gateways = gateways
        self.interval = interval if interval is not None else app_settings.sync_interval_seconds
        self.poll_interval = poll_interval if poll_interval is not None else app_settings.realtime_poll_seconds
        self.auto_create_tables = (
            auto_create_tables if auto_create_tables is not None else app_settings.auto_create_remote_tables
        )
        self.retention_hours = (
            retention_hours if retention_hours is not None else app_settings.change_event_retention_hours
        )
        self.state = SyncState.UNINITIALIZED
        self.is_syncing = False
        self.last_sync_time: Optional[datetime] = None
        self.last_errors: Dict[str, str] = {}
        self._subscriptions: List[Any] = []
        self._timer_task: Optional[asyncio.Task] = None
        self._listen_task: Optional[asyncio.Task] = None
        self._handlers: Dict[str, CollectionHandler] = {
            name: self._collection_handler(name) for name in SYNCED_COLLECTIONS
        }
        self._handlers[SETTINGS_KEY] = CollectionHandler(
            insert=self._apply_settings,
            update=self._apply_settings,
            delete=lambda old: None,
        )

    # ============ LIFECYCLE ============

    async def connect(self) -> SyncResult:
        """
        Check the backend and make it ready for push/pull, without scheduling
        anything. Used by ``initialize()`` and by one-shot scripts.
        """
        if self.state != SyncState.UNINITIALIZED:
            return SyncResult(success=False, message=f"Sync manager already {self.state.value}")

        if not self.gateways.is_configured():
            logger.info("sync_not_configured")
            self.state = SyncState.IDLE
            return SyncResult(success=False, message=NOT_CONFIGURED)

        self.state = SyncState.INITIALIZING
        connection = await asyncio.to_thread(self.gateways.backend.test_connection)
        if not connection.success:
            logger.error("sync_connection_failed", message=connection.message)
            self.state = SyncState.CONNECTION_FAILED
            return connection

        if self.auto_create_tables:
            try:
                await asyncio.to_thread(self.gateways.backend.create_tables)
            except Exception as e:
                logger.error("sync_create_tables_failed", error=str(e))
                self.state = SyncState.CONNECTION_FAILED
                return SyncResult(success=False, message=str(e))

        self.state = SyncState.IDLE
        return connection

    async def initialize(self) -> SyncResult:
        connection = await self.connect()
        if not connection.success:
            return connection

        try:
            # Anything committed from here on reaches us through the feed
            await asyncio.to_thread(self.gateways.feed.mark)
        except Exception as e:
            logger.warning("realtime_prime_failed", error=str(e))

        if self.store.has_local_data():
            # Protect what this device already holds, then pick up what only the remote has
            first = await self.push()
            if first.success:
                await self.pull(MERGE)
        else:
            first = await self.pull(REPLACE)

        self._subscribe_all()
        await self._catch_up()
        self._start_background_tasks()
        logger.info("sync_initialized", subscriptions=len(self._subscriptions), interval=self.interval)
        return SyncResult(
            success=True,
            message="Sync manager initialized",
            counts=first.counts,
            errors=first.errors,
        )

    def _subscribe_all(self) -> None:
        for name in SYNCED_COLLECTIONS:
            sub = self.gateways[name].subscribe(self._make_callback(name))
            if sub is not None:
                self._subscriptions.append(sub)
        sub = self.gateways.settings.subscribe(self._make_callback(SETTINGS_KEY))
        if sub is not None:
            self._subscriptions.append(sub)

    async def _catch_up(self) -> int:
        """Apply changes made remotely while the startup push/pull ran."""
        try:
            events = await asyncio.to_thread(self.gateways.feed.fetch_pending)
        except Exception as e:
            logger.warning("realtime_catch_up_failed", error=str(e))
            return 0
        fresh = [event for event in events if not self._already_pulled(event)]
        delivered = self.gateways.feed.dispatch(fresh)
        if events:
            logger.info("realtime_caught_up", events=len(events), applied=delivered)
        return delivered

    def _start_background_tasks(self) -> None:
        self._timer_task = asyncio.create_task(self._push_periodically())
        self._listen_task = asyncio.create_task(self.gateways.feed.listen(self.poll_interval))

    async def _push_periodically(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            result = await self.push()
            if not result.success and not result.busy:
                logger.warning("sync_periodic_push_failed", message=result.message, errors=result.errors)
            await self.prune_feed()

    async def prune_feed(self) -> int:
        """Drop change events older than the retention window (0 disables pruning)."""
        if self.retention_hours <= 0 or self._can_sync() is not None:
            return 0
        before = datetime.now(timezone.utc) - timedelta(hours=self.retention_hours)
        try:
            return await asyncio.to_thread(self.gateways.feed.prune, before)
        except Exception as e:
            logger.warning("realtime_prune_failed", error=str(e))
            return 0

    async def cleanup(self) -> None:
        """Stop timers and subscriptions. Safe to call repeatedly or before ``initialize()``."""
        for sub in self._subscriptions:
            try:
                sub.unsubscribe()
            except Exception as e:
                logger.warning("sync_unsubscribe_failed", error=str(e))
        self._subscriptions = []

        tasks = [t for t in (self._timer_task, self._listen_task) if t is not None]
        self._timer_task = None
        self._listen_task = None
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.warning("sync_task_ended_with_error", error=str(e))

        if self.state != SyncState.CLEANED_UP:
            logger.info("sync_cleaned_up")
        self.state = SyncState.CLEANED_UP

    def _can_sync(self) -> Optional[SyncResult]:
        if not self.gateways.is_configured():
            return SyncResult(success=False, message=NOT_CONFIGURED)
        if self.state in (SyncState.CONNECTION_FAILED, SyncState.CLEANED_UP, SyncState.UNINITIALIZED):
            return SyncResult(success=False, message=f"Sync unavailable ({self.state.value})")
        return None

    # ============ PUSH ============

    async def push(self) -> SyncResult:
        """
        Send every synced collection plus settings to the remote.

        At most one push runs at a time; an overlapping call returns a busy
        result immediately. Collections fail independently.
        """
        blocked = self._can_sync()
        if blocked is not None:
            return blocked
        if self.is_syncing:
            return SyncResult(success=False, message="Sync already in progress", busy=True)

        self.is_syncing = True
        previous = self.state
        self.state = SyncState.PUSHING
        counts: Dict[str, int] = {}
        errors: Dict[str, str] = {}
        try:
            snapshot = self.store.snapshot(list(SYNCED_COLLECTIONS) + [SETTINGS_KEY])
            for name in SYNCED_COLLECTIONS:
                result = await asyncio.to_thread(self.gateways[name].batch_upsert, snapshot[name])
                if result.ok:
                    counts[name] = len(result.data or [])
                else:
                    errors[name] = result.error
                    logger.warning("sync_push_failed", collection=name, error=result.error)

            result = await asyncio.to_thread(self.gateways.settings.update, snapshot[SETTINGS_KEY])
            if result.ok:
                counts[SETTINGS_KEY] = 1
            else:
                errors[SETTINGS_KEY] = result.error
                logger.warning("sync_push_failed", collection=SETTINGS_KEY, error=result.error)

            self.last_errors = errors
            if errors:
                return SyncResult(success=False, message="Push failed for some collections", counts=counts, errors=errors)
            self.last_sync_time = datetime.now(timezone.utc)
            logger.info("sync_push_completed", counts=counts)
            return SyncResult(success=True, message="Data synced to remote", counts=counts)
        except Exception as e:
            logger.error("sync_push_error", error=str(e))
            return SyncResult(success=False, message=str(e), counts=counts, errors=errors)
        finally:
            self.is_syncing = False
            if self.state == SyncState.PUSHING:
                self.state = previous if previous != SyncState.PUSHING else SyncState.IDLE

    async def manual_sync(self) -> SyncResult:
        return await self.push()

    # ============ PULL ============

    async def _fetch_remote(self, errors: Dict[str, str]) -> Dict[str, Any]:
        remote: Dict[str, Any] = {}
        for name in SYNCED_COLLECTIONS:
            result = await asyncio.to_thread(self.gateways[name].read)
            if result.ok:
                remote[name] = result.data or []
            else:
                errors[name] = result.error
                logger.warning("sync_pull_failed", collection=name, error=result.error)
        result = await asyncio.to_thread(self.gateways.settings.get)
        if result.ok:
            if isinstance(result.data, dict):
                remote[SETTINGS_KEY] = result.data
        else:
            errors[SETTINGS_KEY] = result.error
            logger.warning("sync_pull_failed", collection=SETTINGS_KEY, error=result.error)
        return remote

    async def pull(self, strategy: str = REPLACE) -> SyncResult:
        """
        Load the remote snapshot into the store.

        ``replace`` swaps local collections for the remote ones, but only when
        the remote actually holds data. ``merge`` keeps local-only records.
        A collection that failed to load is left as it is locally.
        """
        if strategy not in (REPLACE, MERGE):
            return SyncResult(success=False, message=f"Unknown pull strategy: {strategy}")
        blocked = self._can_sync()
        if blocked is not None:
            return blocked

        previous = self.state
        self.state = SyncState.PULLING
        errors: Dict[str, str] = {}
        try:
            remote = await self._fetch_remote(errors)
            collections = [name for name in SYNCED_COLLECTIONS if name in remote]

            if strategy == REPLACE and not remote_has_data(remote):
                logger.info("sync_pull_skipped_empty_remote")
                return SyncResult(success=not errors, message="Remote is empty; local data kept", errors=errors)

            counts: Dict[str, int] = {}

            def combine(local: Dict[str, Any]) -> Dict[str, Any]:
                if strategy == REPLACE:
                    partial = {name: remote[name] for name in collections}
                else:
                    partial = {name: merge_collections(local[name], remote[name]) for name in collections}
                if SETTINGS_KEY in remote:
                    partial[SETTINGS_KEY] = remote[SETTINGS_KEY]
                counts.update({name: len(partial[name]) for name in collections})
                return partial

            # Merge against the local state as it is at write time
            self.store.apply(collections, combine)
            self.last_errors = errors
            if not errors:
                self.last_sync_time = datetime.now(timezone.utc)
            logger.info("sync_pull_completed", strategy=strategy, counts=counts, failed=sorted(errors))
            return SyncResult(
                success=not errors,
                message="Data loaded from remote" if not errors else "Pull failed for some collections",
                counts=counts,
                errors=errors,
            )
        except Exception as e:
            logger.error("sync_pull_error", strategy=strategy, error=str(e))
            return SyncResult(success=False, message=str(e), errors=errors)
        finally:
            if self.state == SyncState.PULLING:
                self.state = previous if previous != SyncState.PULLING else SyncState.IDLE

    # ============ LIVE RECONCILIATION ============

    def _collection_handler(self, name: str) -> CollectionHandler:
        def insert(record: Dict[str, Any]) -> None:
            # Append-only; a redelivered insert produces a duplicate
            self.store.apply([name], lambda current: {name: current[name] + [record]})

        def update(record: Dict[str, Any]) -> None:
            def replace(current: Dict[str, Any]) -> Optional[Dict[str, Any]]:
                items = current[name]
                if not any(item.get("id") == record.get("id") for item in items):
                    return None
                return {name: [record if item.get("id") == record.get("id") else item for item in items]}
            self.store.apply([name], replace)

        def delete(old: Dict[str, Any]) -> None:
            def remove(current: Dict[str, Any]) -> Optional[Dict[str, Any]]:
                items = current[name]
                kept = [item for item in items if item.get("id") != old.get("id")]
                return {name: kept} if len(kept) != len(items) else None
            self.store.apply([name], remove)

        return CollectionHandler(insert=insert, update=update, delete=delete)

    def _already_pulled(self, event: RealtimeEvent) -> bool:
        """An INSERT committed before the startup pull read its table."""
        if event.event_type.upper() != "INSERT" or not event.new or event.table not in SYNCED_COLLECTIONS:
            return False
        record_id = event.new.get("id")
        return record_id is not None and self.store.get(event.table, record_id) is not None

    def _apply_settings(self, record: Dict[str, Any]) -> None:
        if record.get("id") == SETTINGS_ID and isinstance(record.get("settings"), dict):
            self.store.replace_state({SETTINGS_KEY: record["settings"]})

    def apply_event(self, table: str, event: RealtimeEvent) -> bool:
        """Apply one change event to the store. Returns False when it was not applicable."""
        handler = self._handlers.get(table)
        if handler is None:
            return False
        kind = event.event_type.upper()
        if kind == "INSERT" and event.new:
            handler.insert(from_remote(event.new, table))
        elif kind == "UPDATE" and event.new:
            handler.update(from_remote(event.new, table))
        elif kind == "DELETE" and event.old:
            handler.delete(from_remote(event.old, table))
        else:
            logger.warning("realtime_event_ignored", table=table, event_type=event.event_type)
            return False
        logger.debug("realtime_event_applied", table=table, event_type=kind, seq=event.seq)
        return True

    def _make_callback(self, table: str) -> Callable[[RealtimeEvent], None]:
        def callback(event: RealtimeEvent) -> None:
            self.apply_event(table, event)
        return callback

    # ============ STATUS ============

    def get_status(self) -> SyncStatus:
        return SyncStatus(
            is_configured=self.gateways.is_configured(),
            state=self.state.value,
            is_syncing=self.is_syncing,
            last_sync_time=self.last_sync_time,
            subscriptions=len(self._subscriptions),
            last_errors=dict(self.last_errors),
        )


def build_sync_manager(store: LocalStore, backend: Optional[RemoteBackend] = None) -> SyncManager:
    backend = backend or RemoteBackend()
    return SyncManager(store, RemoteGateways(backend, SYNCED_COLLECTIONS))
