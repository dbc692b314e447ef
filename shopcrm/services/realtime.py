"""
Change feed over the remote ``change_events`` table.

Gateways append one event per effective write. A ``ChangeFeed`` polls the
table from a background task and hands each new event to the callbacks
subscribed for that table, on the event loop thread.
"""
import asyncio
from datetime import datetime
from typing import Callable, Dict, List, Optional

import structlog
from sqlalchemy import delete, func, select

from ..db import RemoteBackend
from ..models.models import ChangeEvent
from ..schemas.sync import RealtimeEvent


logger = structlog.get_logger(__name__)

ChangeCallback = Callable[[RealtimeEvent], None]


class Subscription:
    def __init__(self, feed: "ChangeFeed", table: str, callback: ChangeCallback):
        self.feed = feed
        self.table = table
        self.callback = callback
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self.active = False
            self.feed._remove(self)


class ChangeFeed:
    def __init__(self, backend: RemoteBackend, include_own: bool = False):
        self.backend = backend
        self.include_own = include_own
        self._subs: Dict[str, List[Subscription]] = {}
        self._cursor: Optional[int] = None

    @property
    def subscription_count(self) -> int:
        return sum(len(subs) for subs in self._subs.values())

    def subscribe(self, table: str, callback: ChangeCallback) -> Subscription:
        sub = Subscription(self, table, callback)
        self._subs.setdefault(table, []).append(sub)
        logger.info("realtime_subscribed", table=table)
        return sub

    def _remove(self, sub: Subscription) -> None:
        subs = self._subs.get(sub.table, [])
        if sub in subs:
            subs.remove(sub)
        if not subs:
            self._subs.pop(sub.table, None)

    def _end_of_feed(self, db) -> int:
        return db.execute(select(func.coalesce(func.max(ChangeEvent.seq), 0))).scalar_one()

    def mark(self) -> int:
        """Move the cursor to the current end of the feed (blocking)."""
        with self.backend.session() as db:
            self._cursor = self._end_of_feed(db)
        return self._cursor

    def fetch_pending(self) -> List[RealtimeEvent]:
        """
        Read events written since the last call (blocking; run off the loop).

        Without a cursor the first call only positions it at the current end
        of the feed, so subscribers never replay history.
        """
        tables = list(self._subs.keys())
        with self.backend.session() as db:
            if self._cursor is None:
                self._cursor = self._end_of_feed(db)
                return []
            if not tables:
                return []
            stmt = (
                select(ChangeEvent)
                .where(ChangeEvent.seq > self._cursor, ChangeEvent.table_name.in_(tables))
                .order_by(ChangeEvent.seq)
            )
            rows = db.execute(stmt).scalars().all()

        events = []
        for row in rows:
            self._cursor = max(self._cursor, row.seq)
            if not self.include_own and row.origin == self.backend.client_id:
                continue
            events.append(RealtimeEvent(
                seq=row.seq,
                table=row.table_name,
                event_type=row.event_type,
                new=row.new_record,
                old=row.old_record,
                origin=row.origin,
            ))
        return events

    def dispatch(self, events: List[RealtimeEvent]) -> int:
        delivered = 0
        for event in events:
            for sub in list(self._subs.get(event.table, [])):
                if not sub.active:
                    continue
                try:
                    sub.callback(event)
                    delivered += 1
                except Exception as e:
                    logger.error("realtime_callback_failed", table=event.table, seq=event.seq, error=str(e))
        return delivered

    def prune(self, before: datetime) -> int:
        """
        Delete events created before ``before`` (blocking).

        The newest event is always kept so ``seq`` never restarts.
        """
        with self.backend.session() as db:
            newest = self._end_of_feed(db)
            result = db.execute(
                delete(ChangeEvent)
                .where(ChangeEvent.created_at < before, ChangeEvent.seq < newest)
                .execution_options(synchronize_session=False)
            )
            db.commit()
        removed = result.rowcount or 0
        if removed:
            logger.info("realtime_feed_pruned", removed=removed, before=before.isoformat())
        return removed

    async def poll_once(self) -> int:
        events = await asyncio.to_thread(self.fetch_pending)
        return self.dispatch(events)

    async def listen(self, interval: float) -> None:
        """Poll every ``interval`` seconds until cancelled; backend errors are logged and retried."""
        while True:
            await asyncio.sleep(interval)
            try:
                await self.poll_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning("realtime_poll_failed", error=str(e))
