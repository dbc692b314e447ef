"""
Uniform CRUD / batch / subscribe surface over the remote tables.

Every call converts records with the format adapter on the way in and out
and returns a ``GatewayResult``; failures (including "not configured") land
in ``GatewayResult.error`` instead of being raised.
"""
from typing import Any, Dict, Iterable, List, Optional

import structlog
from sqlalchemy import Table, delete, insert, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from ..db import RemoteBackend
from ..models.models import ChangeEvent, TABLE_MODELS
from ..schemas.sync import GatewayResult
from .data_transform import from_remote, to_remote, utc_now_iso
from .realtime import ChangeCallback, ChangeFeed, Subscription


logger = structlog.get_logger(__name__)

NOT_CONFIGURED = "Remote backend not configured"
SETTINGS_ID = "main"


def _chunks(items: List[Any], size: int) -> Iterable[List[Any]]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


class TableGateway:
    def __init__(self, table_name: str, backend: RemoteBackend, feed: Optional[ChangeFeed] = None):
        if table_name not in TABLE_MODELS:
            raise KeyError(f"Unknown remote table: {table_name}")
        self.table_name = table_name
        self.backend = backend
        self.feed = feed
        self.table: Table = TABLE_MODELS[table_name].__table__
        self._columns = [c.name for c in self.table.columns]
        self._has_extra = "extra" in self._columns

    # ------------------------------------------------------------------ rows

    def _to_row(self, remote: Dict[str, Any]) -> Dict[str, Any]:
        """Remote-shaped record -> full column values (unknown keys go to ``extra``)."""
        row: Dict[str, Any] = {name: None for name in self._columns}
        extra: Dict[str, Any] = {}
        for key, value in remote.items():
            if key in row and key != "extra":
                row[key] = value
            else:
                extra[key] = value
        if self._has_extra:
            row["extra"] = extra
        elif extra:
            logger.debug("remote_fields_dropped", table=self.table_name, fields=sorted(extra))
        return row

    def _from_row(self, row: Dict[str, Any]) -> Dict[str, Any]:
        """Column values -> remote-shaped record (empty columns are omitted)."""
        record: Dict[str, Any] = {}
        for key, value in (row.get("extra") or {}).items():
            record[key] = value
        for key in self._columns:
            if key == "extra":
                continue
            value = row.get(key)
            if value is not None:
                record[key] = value
        return record

    def _fetch_rows(self, db: Session, ids: List[str]) -> Dict[str, Dict[str, Any]]:
        if not ids:
            return {}
        result = db.execute(select(self.table).where(self.table.c.id.in_(ids)))
        return {r["id"]: dict(r) for r in result.mappings()}

    def _record_event(self, db: Session, event_type: str, record_id: str, new: Optional[dict], old: Optional[dict]) -> None:
        db.add(ChangeEvent(
            table_name=self.table_name,
            event_type=event_type,
            record_id=record_id,
            new_record=new,
            old_record=old,
            origin=self.backend.client_id,
        ))

    def _upsert_rows(self, db: Session, rows: List[Dict[str, Any]]) -> None:
        dialect = db.get_bind().dialect.name
        if dialect in ("postgresql", "sqlite"):
            module = postgresql if dialect == "postgresql" else sqlite
            stmt = module.insert(self.table).values(rows)
            stmt = stmt.on_conflict_do_update(
                index_elements=[self.table.c.id],
                set_={name: stmt.excluded[name] for name in self._columns if name != "id"},
            )
            db.execute(stmt)
            return
        # Other dialects: row by row
        existing = self._fetch_rows(db, [r["id"] for r in rows])
        for row in rows:
            if row["id"] in existing:
                db.execute(update(self.table).where(self.table.c.id == row["id"]).values(**row))
            else:
                db.execute(insert(self.table).values(**row))

    def _guard(self) -> Optional[GatewayResult]:
        if not self.backend.is_configured():
            return GatewayResult(data=None, error=NOT_CONFIGURED)
        return None

    def _failed(self, op: str, e: Exception) -> GatewayResult:
        logger.warning("remote_call_failed", table=self.table_name, op=op, error=str(e))
        return GatewayResult(data=None, error=str(e) or f"{op} failed")

    # ------------------------------------------------------------------ CRUD

    def create(self, data: Dict[str, Any]) -> GatewayResult:
        guard = self._guard()
        if guard:
            return guard
        try:
            remote = to_remote(data, self.table_name)
            if not remote.get("id"):
                return GatewayResult(data=None, error="Record has no id")
            row = self._to_row(remote)
            with self.backend.session() as db:
                db.execute(insert(self.table).values(**row))
                record = self._from_row(row)
                self._record_event(db, "INSERT", row["id"], record, None)
                db.commit()
            return GatewayResult(data=from_remote(record, self.table_name))
        except Exception as e:
            return self._failed("create", e)

    def read(self, record_id: Optional[str] = None) -> GatewayResult:
        guard = self._guard()
        if guard:
            return guard
        try:
            with self.backend.session() as db:
                if record_id is not None:
                    rows = self._fetch_rows(db, [record_id])
                    if record_id not in rows:
                        return GatewayResult(data=None, error="Record not found")
                    return GatewayResult(data=from_remote(self._from_row(rows[record_id]), self.table_name))
                stmt = select(self.table)
                if "created_at" in self._columns:
                    stmt = stmt.order_by(self.table.c.created_at, self.table.c.id)
                rows = [dict(r) for r in db.execute(stmt).mappings()]
            return GatewayResult(data=from_remote([self._from_row(r) for r in rows], self.table_name))
        except Exception as e:
            return self._failed("read", e)

    def update(self, record_id: str, data: Dict[str, Any]) -> GatewayResult:
        guard = self._guard()
        if guard:
            return guard
        try:
            changes = {k: v for k, v in to_remote(data, self.table_name).items() if k != "id"}
            with self.backend.session() as db:
                existing = self._fetch_rows(db, [record_id]).get(record_id)
                if existing is None:
                    return GatewayResult(data=None, error="Record not found")
                old = self._from_row(existing)
                new = dict(old)
                new.update(changes)
                row = self._to_row(new)
                db.execute(update(self.table).where(self.table.c.id == record_id).values(**row))
                record = self._from_row(row)
                if record != old:
                    self._record_event(db, "UPDATE", record_id, record, old)
                db.commit()
            return GatewayResult(data=from_remote(record, self.table_name))
        except Exception as e:
            return self._failed("update", e)

    def remove(self, record_id: str) -> GatewayResult:
        guard = self._guard()
        if guard:
            return guard
        try:
            with self.backend.session() as db:
                existing = self._fetch_rows(db, [record_id]).get(record_id)
                if existing is None:
                    return GatewayResult(data=None)
                old = self._from_row(existing)
                db.execute(delete(self.table).where(self.table.c.id == record_id))
                self._record_event(db, "DELETE", record_id, None, old)
                db.commit()
            return GatewayResult(data=from_remote(old, self.table_name))
        except Exception as e:
            return self._failed("remove", e)

    def upsert(self, data: Dict[str, Any]) -> GatewayResult:
        return self.batch_upsert([data])

    def batch_upsert(self, items: List[Dict[str, Any]]) -> GatewayResult:
        """
        Insert-or-replace many records keyed by ``id`` in one transaction.

        Rows identical to what is already stored are neither rewritten nor
        announced on the change feed.
        """
        if not items:
            return GatewayResult(data=[], error=None)
        guard = self._guard()
        if guard:
            return guard
        try:
            remote_items = to_remote(list(items), self.table_name)
            by_id: Dict[str, Dict[str, Any]] = {}
            skipped = 0
            for item in remote_items:
                if not isinstance(item, dict) or not item.get("id"):
                    skipped += 1
                    continue
                # Last occurrence of an id wins
                by_id[str(item["id"])] = item
            if skipped:
                logger.warning("batch_upsert_skipped_records", table=self.table_name, skipped=skipped)

            written: List[Dict[str, Any]] = []
            with self.backend.session() as db:
                for chunk in _chunks(list(by_id.values()), self.backend.chunk_size):
                    existing = self._fetch_rows(db, [str(item["id"]) for item in chunk])
                    changed_rows = []
                    for item in chunk:
                        row = self._to_row(item)
                        row["id"] = str(row["id"])
                        record = self._from_row(row)
                        written.append(record)
                        before = existing.get(row["id"])
                        if before is None:
                            changed_rows.append(row)
                            self._record_event(db, "INSERT", row["id"], record, None)
                        else:
                            old = self._from_row(before)
                            if old != record:
                                changed_rows.append(row)
                                self._record_event(db, "UPDATE", row["id"], record, old)
                    if changed_rows:
                        self._upsert_rows(db, changed_rows)
                db.commit()
            return GatewayResult(data=from_remote(written, self.table_name))
        except Exception as e:
            return self._failed("batch_upsert", e)

    def subscribe(self, callback: ChangeCallback) -> Optional[Subscription]:
        if not self.backend.is_configured() or self.feed is None:
            return None
        return self.feed.subscribe(self.table_name, callback)


class SettingsGateway:
    """The settings singleton, stored as one row under ``SETTINGS_ID``."""

    def __init__(self, table: TableGateway):
        self.table = table

    def get(self) -> GatewayResult:
        result = self.table.read(SETTINGS_ID)
        if result.error == "Record not found":
            return GatewayResult(data=None)
        if not result.ok:
            return result
        return GatewayResult(data=(result.data or {}).get("settings"))

    def update(self, settings: Dict[str, Any]) -> GatewayResult:
        current = self.get()
        if not current.ok:
            return current
        if current.data == settings:
            return GatewayResult(data=settings)
        result = self.table.upsert({"id": SETTINGS_ID, "settings": settings, "updatedAt": utc_now_iso()})
        if not result.ok:
            return result
        return GatewayResult(data=settings)

    def subscribe(self, callback: ChangeCallback) -> Optional[Subscription]:
        return self.table.subscribe(callback)


class RemoteGateways:
    """One gateway per synced table, sharing a backend and a change feed."""

    def __init__(self, backend: RemoteBackend, tables: Iterable[str]):
        self.backend = backend
        self.feed = ChangeFeed(backend)
        self.tables: Dict[str, TableGateway] = {
            name: TableGateway(name, backend, self.feed) for name in tables
        }
        self.settings = SettingsGateway(TableGateway("settings", backend, self.feed))

    def __getitem__(self, table_name: str) -> TableGateway:
        return self.tables[table_name]

    def is_configured(self) -> bool:
        return self.backend.is_configured()
