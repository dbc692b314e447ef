"""
In-process CRM document store.

All domain state lives in one ``LocalStore`` built at startup and handed to
every consumer. Collections are only changed through the mutator methods
below (plus ``replace_state`` for the sync engine); each mutator writes the
full document back to storage before returning.
"""
import copy
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional

import pytz
import structlog

from ..auth.security import get_password_hash, is_password_hash, verify_password
from ..config import settings as app_settings
from ..schemas.state import PersistedDocument, STATE_VERSION
from ..services.data_transform import safe_date_parse, utc_now_iso
from ..storage.provider import StateStorage
from .defaults import DEFAULT_SETTINGS, default_collection, default_state


logger = structlog.get_logger(__name__)

COLLECTIONS = (
    "jobs",
    "customers",
    "statuses",
    "services",
    "leads",
    "leadStatuses",
    "invoices",
    "estimates",
    "expenses",
    "expenseCategories",
    "payments",
    "tasks",
    "projects",
    "tickets",
    "ticketStatuses",
    "ticketPriorities",
    "knowledgeBase",
    "contracts",
    "events",
    "goals",
    "users",
)
SETTINGS_KEY = "settings"

# Collections mirrored to the remote backend
SYNCED_COLLECTIONS = (
    "jobs",
    "customers",
    "services",
    "statuses",
    "leads",
    "invoices",
    "estimates",
    "expenses",
    "payments",
    "tasks",
    "tickets",
)

# Checked to decide whether a device already holds data worth protecting
REPRESENTATIVE_COLLECTIONS = ("jobs", "customers", "statuses", "services")

# Field defaults applied when the payload leaves them empty
RECORD_DEFAULTS: Dict[str, Dict[str, Any]] = {
    "leads": {"status": "new"},
    "invoices": {"status": "draft"},
    "estimates": {"status": "draft"},
    "tasks": {"status": "pending"},
    "projects": {"status": "not-started"},
    "tickets": {"status": "open", "priority": "medium"},
    "contracts": {"status": "draft"},
    "knowledgeBase": {"views": 0, "helpful": 0, "notHelpful": 0},
    "goals": {"progress": 0},
}

ACTIVE_JOB_EXCLUDED = ("delivered", "ready")
PENDING_INVOICE_STATUSES = ("sent", "overdue")
OPEN_TICKET_STATUSES = ("open", "in-progress")
CLOSED_LEAD_STATUSES = ("won", "lost")


def public_user(user: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if user is None:
        return None
    return {k: v for k, v in user.items() if k != "password"}


def _amount(value: Any) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


class LocalStore:
    def __init__(
        self,
        storage: StateStorage,
        storage_key: Optional[str] = None,
        state: Optional[Dict[str, Any]] = None,
        tz_name: Optional[str] = None,
    ):
        self._storage = storage
        self._key = storage_key or app_settings.state_storage_key
        self._tz = pytz.timezone(tz_name or app_settings.tz_default)
        self._lock = threading.RLock()
        self._state: Dict[str, Any] = state if state is not None else default_state(COLLECTIONS + (SETTINGS_KEY,))
        # Special-purpose adders/updaters reached through the generic entry points
        self._adders: Dict[str, Callable[[Dict[str, Any]], Dict[str, Any]]] = {
            "jobs": self.add_job,
            "invoices": self.add_invoice,
            "estimates": self.add_estimate,
            "tickets": self.add_ticket,
            "users": self.add_user,
        }
        self._updaters: Dict[str, Callable[[str, Dict[str, Any]], Optional[Dict[str, Any]]]] = {
            "jobs": self.update_job,
            "estimates": self.update_estimate,
            "users": self.update_user,
        }

    # ============ PERSISTENCE ============

    @classmethod
    def load(cls, storage: StateStorage, storage_key: Optional[str] = None, tz_name: Optional[str] = None) -> "LocalStore":
        """Rehydrate from the persisted document, or start from defaults."""
        key = storage_key or app_settings.state_storage_key
        raw = storage.read(key)
        if raw is None:
            store = cls(storage, key, tz_name=tz_name)
            store._persist()
            return store

        try:
            doc = PersistedDocument.model_validate_json(raw)
        except Exception as e:
            # Keep the unreadable document aside instead of silently overwriting it
            logger.error("local_state_unreadable", key=key, error=str(e))
            storage.write(f"{key}.corrupt", raw)
            store = cls(storage, key, tz_name=tz_name)
            store._persist()
            return store

        state = cls._migrate(doc.state, doc.version)
        store = cls(storage, key, state=state, tz_name=tz_name)
        logger.info("local_state_loaded", key=key, version=doc.version)
        return store

    @staticmethod
    def _migrate(loaded: Dict[str, Any], version: int) -> Dict[str, Any]:
        state: Dict[str, Any] = {}
        for name in COLLECTIONS:
            value = loaded.get(name)
            state[name] = value if isinstance(value, list) else default_collection(name)

        loaded_settings = loaded.get(SETTINGS_KEY)
        merged = copy.deepcopy(DEFAULT_SETTINGS)
        if isinstance(loaded_settings, dict):
            merged.update(loaded_settings)
        if "nextTicketNumber" not in (loaded_settings or {}):
            # Older documents numbered tickets from the collection length
            merged["nextTicketNumber"] = max(1001, 1001 + len(state["tickets"]))
        state[SETTINGS_KEY] = merged

        if version < STATE_VERSION:
            # Version 0 kept plaintext passwords
            for user in state["users"]:
                pw = user.get("password")
                if pw and not is_password_hash(pw):
                    user["password"] = get_password_hash(pw)
        return state

    @property
    def storage(self) -> StateStorage:
        return self._storage

    @property
    def storage_key(self) -> str:
        return self._key

    def reload(self) -> None:
        """Re-read the persisted document in place (used after an import)."""
        fresh = self.load(self._storage, self._key, tz_name=self._tz.zone)
        with self._lock:
            self._state = fresh._state
        logger.info("local_state_reloaded", key=self._key)

    def _persist(self) -> None:
        doc = PersistedDocument(state=self._state, version=STATE_VERSION)
        self._storage.write(self._key, doc.model_dump_json())

    @contextmanager
    def _mutation(self):
        with self._lock:
            yield
            self._persist()

    # ============ READS ============

    def list(self, collection: str) -> List[Dict[str, Any]]:
        self._check_collection(collection)
        with self._lock:
            return copy.deepcopy(self._state[collection])

    def get(self, collection: str, record_id: str) -> Optional[Dict[str, Any]]:
        self._check_collection(collection)
        with self._lock:
            for record in self._state[collection]:
                if record.get("id") == record_id:
                    return copy.deepcopy(record)
        return None

    def resolve(self, collection: str, record_id: Optional[str]) -> Dict[str, Any]:
        """Follow a foreign key; dangling ids give a placeholder record."""
        record = self.get(collection, record_id) if record_id else None
        if record is None:
            return {"id": record_id, "name": "Not found", "missing": True}
        return record

    def filter(self, collection: str, field: str, value: Any) -> List[Dict[str, Any]]:
        self._check_collection(collection)
        with self._lock:
            return [copy.deepcopy(r) for r in self._state[collection] if r.get(field) == value]

    def get_settings(self) -> Dict[str, Any]:
        with self._lock:
            return copy.deepcopy(self._state[SETTINGS_KEY])

    def snapshot(self, collections: Optional[Iterable[str]] = None) -> Dict[str, Any]:
        names = list(collections) if collections is not None else list(COLLECTIONS) + [SETTINGS_KEY]
        with self._lock:
            return {name: copy.deepcopy(self._state[name]) for name in names}

    def has_local_data(self, collections: Iterable[str] = REPRESENTATIVE_COLLECTIONS) -> bool:
        with self._lock:
            return any(self._state[name] for name in collections)

    # ============ BULK REPLACE (sync engine only) ============

    def replace_state(self, partial: Dict[str, Any]) -> None:
        """
        Swap one or more collections at once.

        Every key and value is checked before anything is assigned, so a bad
        snapshot raises ValueError and leaves the store exactly as it was.
        """
        staged: Dict[str, Any] = {}
        for name, value in partial.items():
            if name == SETTINGS_KEY:
                if not isinstance(value, dict):
                    raise ValueError("settings must be an object")
            elif name in COLLECTIONS:
                if not isinstance(value, list) or not all(isinstance(r, dict) for r in value):
                    raise ValueError(f"{name} must be a list of records")
            else:
                raise ValueError(f"Unknown collection: {name}")
            staged[name] = copy.deepcopy(value)

        if not staged:
            return
        with self._mutation():
            self._state.update(staged)

    def apply(
        self,
        collections: Iterable[str],
        fn: Callable[[Dict[str, Any]], Optional[Dict[str, Any]]],
    ) -> bool:
        """
        Read-modify-write under the store lock.

        ``fn`` receives a snapshot of ``collections`` and returns the partial
        state to write back, or None to leave the store untouched. No other
        writer can slip in between the read and the write.
        """
        with self._lock:
            partial = fn(self.snapshot(collections))
            if partial is None:
                return False
            self.replace_state(partial)
            return True

    # ============ GENERIC RECORD OPERATIONS ============

    def add_record(self, collection: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        self._check_collection(collection)
        adder = self._adders.get(collection)
        if adder is not None:
            return adder(payload)
        with self._mutation():
            return copy.deepcopy(self._insert(collection, payload))

    def update_record(self, collection: str, record_id: str, updates: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        self._check_collection(collection)
        updater = self._updaters.get(collection)
        if updater is not None:
            return updater(record_id, updates)
        with self._mutation():
            return self._patch(collection, record_id, updates)

    def delete_record(self, collection: str, record_id: str) -> bool:
        self._check_collection(collection)
        with self._mutation():
            records = self._state[collection]
            kept = [r for r in records if r.get("id") != record_id]
            self._state[collection] = kept
            return len(kept) != len(records)

    def _check_collection(self, collection: str) -> None:
        if collection not in COLLECTIONS:
            raise KeyError(f"Unknown collection: {collection}")

    def _insert(self, collection: str, payload: Dict[str, Any], **fields: Any) -> Dict[str, Any]:
        now = utc_now_iso()
        record = copy.deepcopy(payload)
        for key, default in RECORD_DEFAULTS.get(collection, {}).items():
            if not record.get(key) and record.get(key) != 0:
                record[key] = copy.deepcopy(default)
        record.update(fields)
        record["id"] = str(uuid.uuid4())
        record["createdAt"] = now
        record["updatedAt"] = now
        self._state[collection].append(record)
        return record

    def _index_of(self, collection: str, record_id: str) -> Optional[int]:
        for i, record in enumerate(self._state[collection]):
            if record.get("id") == record_id:
                return i
        return None

    @staticmethod
    def _stamp(previous: Optional[str]) -> str:
        # updatedAt never moves backwards, even if the stored value came from a faster clock
        now = utc_now_iso()
        prev = safe_date_parse(previous) if previous else None
        return prev if prev and prev > now else now

    def _patch(
        self,
        collection: str,
        record_id: str,
        updates: Dict[str, Any],
        prepare: Optional[Callable[[Dict[str, Any], Dict[str, Any], str], None]] = None,
    ) -> Optional[Dict[str, Any]]:
        idx = self._index_of(collection, record_id)
        if idx is None:
            return None
        current = self._state[collection][idx]
        changes = {k: copy.deepcopy(v) for k, v in updates.items() if k not in ("id", "createdAt", "updatedAt")}
        stamp = self._stamp(current.get("updatedAt"))
        record = dict(current)
        if prepare is not None:
            prepare(record, changes, stamp)
        record.update(changes)
        record["updatedAt"] = stamp
        self._state[collection][idx] = record
        return copy.deepcopy(record)

    def _next_number(self, counter: str, prefix_key: str) -> str:
        state_settings = self._state[SETTINGS_KEY]
        number = int(state_settings.get(counter) or DEFAULT_SETTINGS[counter])
        state_settings[counter] = number + 1
        return f"{state_settings.get(prefix_key, DEFAULT_SETTINGS[prefix_key])}{number}"

    # ============ JOBS ============

    def add_job(self, job: Dict[str, Any]) -> Dict[str, Any]:
        with self._mutation():
            record = self._insert("jobs", job)
            record["history"] = [{"status": record.get("status"), "date": record["createdAt"], "note": "Job created"}]
            record.setdefault("images", {})
            record.pop("statusNote", None)
            return copy.deepcopy(record)

    def update_job(self, job_id: str, updates: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        updates = dict(updates)
        note = updates.pop("statusNote", None)
        # History is append-only and only grows through status changes
        updates.pop("history", None)

        def append_history(record, changes, stamp):
            new_status = changes.get("status")
            if new_status and new_status != record.get("status"):
                history = list(record.get("history") or [])
                history.append({
                    "status": new_status,
                    "date": stamp,
                    "note": note or f"Status changed to {new_status}",
                })
                record["history"] = history

        with self._mutation():
            return self._patch("jobs", job_id, updates, prepare=append_history)

    def delete_job(self, job_id: str) -> bool:
        return self.delete_record("jobs", job_id)

    def add_job_image(self, job_id: str, status: str, image_data: str) -> Optional[Dict[str, Any]]:
        with self._mutation():
            idx = self._index_of("jobs", job_id)
            if idx is None:
                return None
            job = dict(self._state["jobs"][idx])
            stamp = self._stamp(job.get("updatedAt"))
            image = {"id": str(uuid.uuid4()), "data": image_data, "status": status, "uploadedAt": stamp}
            images = dict(job.get("images") or {})
            images[status] = list(images.get(status) or []) + [image]
            job["images"] = images
            job["updatedAt"] = stamp
            self._state["jobs"][idx] = job
            return copy.deepcopy(image)

    def delete_job_image(self, job_id: str, status: str, image_id: str) -> bool:
        with self._mutation():
            idx = self._index_of("jobs", job_id)
            if idx is None:
                return False
            job = dict(self._state["jobs"][idx])
            images = dict(job.get("images") or {})
            current = images.get(status) or []
            kept = [img for img in current if img.get("id") != image_id]
            if len(kept) == len(current):
                return False
            images[status] = kept
            job["images"] = images
            job["updatedAt"] = self._stamp(job.get("updatedAt"))
            self._state["jobs"][idx] = job
            return True

    # ============ CUSTOMERS ============

    def add_customer(self, customer: Dict[str, Any]) -> Dict[str, Any]:
        return self.add_record("customers", customer)

    def update_customer(self, customer_id: str, updates: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return self.update_record("customers", customer_id, updates)

    def delete_customer(self, customer_id: str) -> bool:
        return self.delete_record("customers", customer_id)

    # ============ LEADS ============

    def add_lead(self, lead: Dict[str, Any]) -> Dict[str, Any]:
        return self.add_record("leads", lead)

    def update_lead(self, lead_id: str, updates: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return self.update_record("leads", lead_id, updates)

    def delete_lead(self, lead_id: str) -> bool:
        return self.delete_record("leads", lead_id)

    def convert_lead_to_customer(self, lead_id: str) -> Optional[Dict[str, Any]]:
        with self._mutation():
            idx = self._index_of("leads", lead_id)
            if idx is None:
                return None
            lead = self._state["leads"][idx]
            customer = self._insert("customers", {
                "name": lead.get("name"),
                "email": lead.get("email"),
                "phone": lead.get("phone"),
                "company": lead.get("company"),
                "address": lead.get("address"),
                "notes": lead.get("notes"),
                "source": "Converted from lead",
                "leadId": lead_id,
            })
            self._patch("leads", lead_id, {"status": "won", "convertedAt": customer["createdAt"]})
            return copy.deepcopy(customer)

    # ============ INVOICES ============

    def add_invoice(self, invoice: Dict[str, Any]) -> Dict[str, Any]:
        with self._mutation():
            number = self._next_number("nextInvoiceNumber", "invoicePrefix")
            return copy.deepcopy(self._insert("invoices", invoice, invoiceNumber=number))

    def update_invoice(self, invoice_id: str, updates: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return self.update_record("invoices", invoice_id, updates)

    def delete_invoice(self, invoice_id: str) -> bool:
        return self.delete_record("invoices", invoice_id)

    # ============ ESTIMATES ============

    def _new_public_token(self) -> str:
        taken = {e.get("publicToken") for e in self._state["estimates"]}
        token = uuid.uuid4().hex[:16]
        while token in taken:
            token = uuid.uuid4().hex[:16]
        return token

    def add_estimate(self, estimate: Dict[str, Any]) -> Dict[str, Any]:
        with self._mutation():
            number = self._next_number("nextEstimateNumber", "estimatePrefix")
            record = self._insert(
                "estimates",
                estimate,
                estimateNumber=number,
                publicToken=self._new_public_token(),
            )
            return copy.deepcopy(record)

    def update_estimate(self, estimate_id: str, updates: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        # The public token is fixed at creation
        updates = {k: v for k, v in updates.items() if k != "publicToken"}
        with self._mutation():
            return self._patch("estimates", estimate_id, updates)

    def delete_estimate(self, estimate_id: str) -> bool:
        return self.delete_record("estimates", estimate_id)

    def get_estimate_by_token(self, token: str) -> Optional[Dict[str, Any]]:
        if not token:
            return None
        matches = self.filter("estimates", "publicToken", token)
        return matches[0] if matches else None

    def _respond_to_estimate(self, token: str, status: str, stamp_field: str) -> Optional[Dict[str, Any]]:
        with self._mutation():
            estimate = next((e for e in self._state["estimates"] if token and e.get("publicToken") == token), None)
            if estimate is None:
                return None
            return self._patch("estimates", estimate["id"], {"status": status, stamp_field: utc_now_iso()})

    def accept_estimate(self, token: str) -> Optional[Dict[str, Any]]:
        return self._respond_to_estimate(token, "accepted", "acceptedAt")

    def decline_estimate(self, token: str) -> Optional[Dict[str, Any]]:
        return self._respond_to_estimate(token, "declined", "declinedAt")

    def convert_estimate_to_invoice(self, estimate_id: str) -> Optional[Dict[str, Any]]:
        with self._mutation():
            idx = self._index_of("estimates", estimate_id)
            if idx is None:
                return None
            estimate = self._state["estimates"][idx]
            number = self._next_number("nextInvoiceNumber", "invoicePrefix")
            invoice = self._insert("invoices", {
                "customerId": estimate.get("customerId"),
                "items": estimate.get("items"),
                "subtotal": estimate.get("subtotal"),
                "tax": estimate.get("tax"),
                "total": estimate.get("total"),
                "notes": estimate.get("notes"),
                "dueDate": estimate.get("validUntil"),
                "fromEstimate": estimate_id,
            }, invoiceNumber=number)
            self._patch("estimates", estimate_id, {"status": "accepted", "convertedAt": invoice["createdAt"]})
            return copy.deepcopy(invoice)

    # ============ EXPENSES / PAYMENTS / TASKS ============

    def add_expense(self, expense: Dict[str, Any]) -> Dict[str, Any]:
        return self.add_record("expenses", expense)

    def update_expense(self, expense_id: str, updates: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return self.update_record("expenses", expense_id, updates)

    def delete_expense(self, expense_id: str) -> bool:
        return self.delete_record("expenses", expense_id)

    def add_payment(self, payment: Dict[str, Any]) -> Dict[str, Any]:
        return self.add_record("payments", payment)

    def update_payment(self, payment_id: str, updates: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return self.update_record("payments", payment_id, updates)

    def delete_payment(self, payment_id: str) -> bool:
        return self.delete_record("payments", payment_id)

    def add_task(self, task: Dict[str, Any]) -> Dict[str, Any]:
        return self.add_record("tasks", task)

    def update_task(self, task_id: str, updates: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return self.update_record("tasks", task_id, updates)

    def delete_task(self, task_id: str) -> bool:
        return self.delete_record("tasks", task_id)

    # ============ TICKETS ============

    def add_ticket(self, ticket: Dict[str, Any]) -> Dict[str, Any]:
        with self._mutation():
            number = self._next_number("nextTicketNumber", "ticketPrefix")
            record = self._insert("tickets", ticket, ticketNumber=number)
            record.setdefault("replies", [])
            return copy.deepcopy(record)

    def update_ticket(self, ticket_id: str, updates: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return self.update_record("tickets", ticket_id, updates)

    def delete_ticket(self, ticket_id: str) -> bool:
        return self.delete_record("tickets", ticket_id)

    def add_ticket_reply(self, ticket_id: str, reply: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        created: Dict[str, Any] = {}

        def append_reply(record, changes, stamp):
            created.update(copy.deepcopy(reply))
            created["id"] = str(uuid.uuid4())
            created["createdAt"] = stamp
            record["replies"] = list(record.get("replies") or []) + [dict(created)]

        with self._mutation():
            if self._patch("tickets", ticket_id, {}, prepare=append_reply) is None:
                return None
            return copy.deepcopy(created)

    # ============ SERVICES / STATUSES ============

    def add_service(self, service: Dict[str, Any]) -> Dict[str, Any]:
        return self.add_record("services", service)

    def update_service(self, service_id: str, updates: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return self.update_record("services", service_id, updates)

    def delete_service(self, service_id: str) -> bool:
        return self.delete_record("services", service_id)

    def add_status(self, status: Dict[str, Any]) -> Dict[str, Any]:
        return self.add_record("statuses", status)

    def update_status(self, status_id: str, updates: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return self.update_record("statuses", status_id, updates)

    def delete_status(self, status_id: str) -> bool:
        return self.delete_record("statuses", status_id)

    def reorder_statuses(self, status_ids: List[str]) -> List[Dict[str, Any]]:
        """Put statuses in the given id order; unlisted ones keep their relative order at the end."""
        with self._mutation():
            by_id = {s.get("id"): s for s in self._state["statuses"]}
            ordered = [by_id[i] for i in dict.fromkeys(status_ids) if i in by_id]
            listed = {s.get("id") for s in ordered}
            ordered += [s for s in self._state["statuses"] if s.get("id") not in listed]
            stamp = utc_now_iso()
            reordered = []
            for position, status in enumerate(ordered, start=1):
                updated = dict(status)
                if updated.get("order") != position:
                    updated["order"] = position
                    updated["updatedAt"] = stamp
                reordered.append(updated)
            self._state["statuses"] = reordered
            return copy.deepcopy(reordered)

    # ============ SETTINGS ============

    def update_settings(self, updates: Dict[str, Any]) -> Dict[str, Any]:
        with self._mutation():
            merged = dict(self._state[SETTINGS_KEY])
            merged.update(copy.deepcopy(updates))
            self._state[SETTINGS_KEY] = merged
            return copy.deepcopy(merged)

    # ============ USERS ============

    def add_user(self, user: Dict[str, Any]) -> Dict[str, Any]:
        payload = dict(user)
        if payload.get("password") and not is_password_hash(payload["password"]):
            payload["password"] = get_password_hash(payload["password"])
        with self._mutation():
            return public_user(copy.deepcopy(self._insert("users", payload)))

    def update_user(self, user_id: str, updates: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        updates = dict(updates)
        if updates.get("password") and not is_password_hash(updates["password"]):
            updates["password"] = get_password_hash(updates["password"])
        elif "password" in updates:
            # Blank password on an edit form means "unchanged"
            updates.pop("password")
        with self._mutation():
            return public_user(self._patch("users", user_id, updates))

    def delete_user(self, user_id: str) -> bool:
        return self.delete_record("users", user_id)

    def authenticate(self, username: str, password: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            user = next((u for u in self._state["users"] if u.get("username") == username), None)
            if user is None or not verify_password(password, user.get("password")):
                return None
            return public_user(copy.deepcopy(user))

    # ============ STATS & REPORTS ============

    def _local_dt(self, value: Any) -> Optional[datetime]:
        canonical = safe_date_parse(value)
        if canonical is None:
            return None
        parsed = datetime.strptime(canonical, "%Y-%m-%dT%H:%M:%S.%fZ").replace(tzinfo=pytz.utc)
        return parsed.astimezone(self._tz)

    def get_stats(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Dashboard figures, recomputed from the collections on every call."""
        with self._lock:
            state = copy.deepcopy({k: self._state[k] for k in ("jobs", "customers", "payments", "expenses", "invoices", "tickets", "leads", "tasks")})

        current = (now or datetime.now(pytz.utc))
        if current.tzinfo is None:
            current = pytz.utc.localize(current)
        current = current.astimezone(self._tz)

        def this_month(value: Any) -> bool:
            dt = self._local_dt(value)
            return dt is not None and dt.year == current.year and dt.month == current.month

        jobs = state["jobs"]
        delivered = [j for j in jobs if j.get("status") == "delivered"]
        active_jobs = [j for j in jobs if j.get("status") not in ACTIVE_JOB_EXCLUDED]
        completed_this_month = [j for j in delivered if this_month(j.get("createdAt"))]

        payments_revenue = sum(_amount(p.get("amount")) for p in state["payments"])
        completed_jobs_revenue = sum(_amount(j.get("totalPrice")) for j in delivered)
        total_revenue = payments_revenue + completed_jobs_revenue

        monthly_payments_revenue = sum(_amount(p.get("amount")) for p in state["payments"] if this_month(p.get("createdAt")))
        monthly_jobs_revenue = sum(_amount(j.get("totalPrice")) for j in delivered if this_month(j.get("updatedAt")))
        monthly_revenue = monthly_payments_revenue + monthly_jobs_revenue

        total_expenses = sum(_amount(e.get("amount")) for e in state["expenses"])
        monthly_expenses = sum(
            _amount(e.get("amount")) for e in state["expenses"] if this_month(e.get("date") or e.get("createdAt"))
        )

        pending_invoices = [i for i in state["invoices"] if i.get("status") in PENDING_INVOICE_STATUSES]

        return {
            "totalJobs": len(jobs),
            "activeJobs": len(active_jobs),
            "completedThisMonth": len(completed_this_month),
            "totalCustomers": len(state["customers"]),
            "monthlyRevenue": monthly_revenue,
            "totalRevenue": total_revenue,
            "totalExpenses": total_expenses,
            "monthlyExpenses": monthly_expenses,
            "profit": total_revenue - total_expenses,
            "monthlyProfit": monthly_revenue - monthly_expenses,
            "pendingInvoices": len(pending_invoices),
            "pendingAmount": sum(_amount(i.get("total")) for i in pending_invoices),
            "openTickets": len([t for t in state["tickets"] if t.get("status") in OPEN_TICKET_STATUSES]),
            "activeLeads": len([l for l in state["leads"] if l.get("status") not in CLOSED_LEAD_STATUSES]),
            "totalLeads": len(state["leads"]),
            "totalTasks": len(state["tasks"]),
            "pendingTasks": len([t for t in state["tasks"] if t.get("status") != "completed"]),
        }

