from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    String,
    Text,
    DateTime,
    Integer,
    JSON,
    Index,
)
from sqlalchemy.orm import Mapped, mapped_column

from ..db import Base


# Records keep the client-generated id; dates travel as canonical ISO strings
def record_pk() -> Mapped[str]:
    return mapped_column(String(64), primary_key=True)


def iso_date() -> Mapped[Optional[str]]:
    return mapped_column(Text)


def extra_json() -> Mapped[Optional[dict]]:
    # Fields without a dedicated column
    return mapped_column(JSON, default=dict)


class Job(Base):
    __tablename__ = "jobs"

    id: Mapped[str] = record_pk()
    customer_id: Mapped[Optional[str]] = mapped_column(String(64), index=True)
    status: Mapped[Optional[str]] = mapped_column(Text, index=True)
    vehicle_make: Mapped[Optional[str]] = mapped_column(Text)
    vehicle_model: Mapped[Optional[str]] = mapped_column(Text)
    vehicle_year: Mapped[Optional[object]] = mapped_column(JSON)
    vehicle_color: Mapped[Optional[str]] = mapped_column(Text)
    license_plate: Mapped[Optional[str]] = mapped_column(Text)
    estimated_completion: Mapped[Optional[str]] = iso_date()
    total_price: Mapped[Optional[object]] = mapped_column(JSON)
    history: Mapped[Optional[list]] = mapped_column(JSON)
    images: Mapped[Optional[dict]] = mapped_column(JSON)
    created_at: Mapped[Optional[str]] = iso_date()
    updated_at: Mapped[Optional[str]] = iso_date()
    extra: Mapped[Optional[dict]] = extra_json()


class Customer(Base):
    __tablename__ = "customers"

    id: Mapped[str] = record_pk()
    name: Mapped[Optional[str]] = mapped_column(Text)
    email: Mapped[Optional[str]] = mapped_column(Text)
    phone: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[Optional[str]] = iso_date()
    updated_at: Mapped[Optional[str]] = iso_date()
    extra: Mapped[Optional[dict]] = extra_json()


class Service(Base):
    __tablename__ = "services"

    id: Mapped[str] = record_pk()
    name: Mapped[Optional[str]] = mapped_column(Text)
    price: Mapped[Optional[object]] = mapped_column(JSON)
    duration: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[Optional[str]] = iso_date()
    updated_at: Mapped[Optional[str]] = iso_date()
    extra: Mapped[Optional[dict]] = extra_json()


class Status(Base):
    __tablename__ = "statuses"

    id: Mapped[str] = record_pk()
    name: Mapped[Optional[str]] = mapped_column(Text)
    color: Mapped[Optional[str]] = mapped_column(Text)
    order: Mapped[Optional[object]] = mapped_column("order", JSON)
    created_at: Mapped[Optional[str]] = iso_date()
    updated_at: Mapped[Optional[str]] = iso_date()
    extra: Mapped[Optional[dict]] = extra_json()


class Lead(Base):
    __tablename__ = "leads"

    id: Mapped[str] = record_pk()
    name: Mapped[Optional[str]] = mapped_column(Text)
    email: Mapped[Optional[str]] = mapped_column(Text)
    phone: Mapped[Optional[str]] = mapped_column(Text)
    status: Mapped[Optional[str]] = mapped_column(Text, index=True)
    created_at: Mapped[Optional[str]] = iso_date()
    updated_at: Mapped[Optional[str]] = iso_date()
    extra: Mapped[Optional[dict]] = extra_json()


class Invoice(Base):
    __tablename__ = "invoices"

    id: Mapped[str] = record_pk()
    invoice_number: Mapped[Optional[str]] = mapped_column(Text, index=True)
    customer_id: Mapped[Optional[str]] = mapped_column(String(64), index=True)
    status: Mapped[Optional[str]] = mapped_column(Text)
    due_date: Mapped[Optional[str]] = iso_date()
    items: Mapped[Optional[list]] = mapped_column(JSON)
    total: Mapped[Optional[object]] = mapped_column(JSON)
    created_at: Mapped[Optional[str]] = iso_date()
    updated_at: Mapped[Optional[str]] = iso_date()
    extra: Mapped[Optional[dict]] = extra_json()


class Estimate(Base):
    __tablename__ = "estimates"

    id: Mapped[str] = record_pk()
    estimate_number: Mapped[Optional[str]] = mapped_column(Text, index=True)
    public_token: Mapped[Optional[str]] = mapped_column(String(64), unique=True)
    customer_id: Mapped[Optional[str]] = mapped_column(String(64), index=True)
    status: Mapped[Optional[str]] = mapped_column(Text)
    valid_until: Mapped[Optional[str]] = iso_date()
    items: Mapped[Optional[list]] = mapped_column(JSON)
    total: Mapped[Optional[object]] = mapped_column(JSON)
    created_at: Mapped[Optional[str]] = iso_date()
    updated_at: Mapped[Optional[str]] = iso_date()
    extra: Mapped[Optional[dict]] = extra_json()


class Expense(Base):
    __tablename__ = "expenses"

    id: Mapped[str] = record_pk()
    category_id: Mapped[Optional[str]] = mapped_column(String(64))
    amount: Mapped[Optional[object]] = mapped_column(JSON)
    created_at: Mapped[Optional[str]] = iso_date()
    updated_at: Mapped[Optional[str]] = iso_date()
    extra: Mapped[Optional[dict]] = extra_json()


class Payment(Base):
    __tablename__ = "payments"

    id: Mapped[str] = record_pk()
    invoice_id: Mapped[Optional[str]] = mapped_column(String(64), index=True)
    amount: Mapped[Optional[object]] = mapped_column(JSON)
    created_at: Mapped[Optional[str]] = iso_date()
    updated_at: Mapped[Optional[str]] = iso_date()
    extra: Mapped[Optional[dict]] = extra_json()


class Task(Base):
    __tablename__ = "tasks"

    id: Mapped[str] = record_pk()
    title: Mapped[Optional[str]] = mapped_column(Text)
    status: Mapped[Optional[str]] = mapped_column(Text)
    assigned_to: Mapped[Optional[str]] = mapped_column(String(64))
    due_date: Mapped[Optional[str]] = iso_date()
    created_at: Mapped[Optional[str]] = iso_date()
    updated_at: Mapped[Optional[str]] = iso_date()
    extra: Mapped[Optional[dict]] = extra_json()


class Ticket(Base):
    __tablename__ = "tickets"

    id: Mapped[str] = record_pk()
    ticket_number: Mapped[Optional[str]] = mapped_column(Text, index=True)
    status: Mapped[Optional[str]] = mapped_column(Text)
    priority: Mapped[Optional[str]] = mapped_column(Text)
    replies: Mapped[Optional[list]] = mapped_column(JSON)
    created_at: Mapped[Optional[str]] = iso_date()
    updated_at: Mapped[Optional[str]] = iso_date()
    extra: Mapped[Optional[dict]] = extra_json()


class SettingsRecord(Base):
    """Singleton row addressed by the sentinel id ``main``."""
    __tablename__ = "settings"

    id: Mapped[str] = record_pk()
    settings: Mapped[Optional[dict]] = mapped_column(JSON)
    updated_at: Mapped[Optional[str]] = iso_date()


class ChangeEvent(Base):
    """Append-only change feed read by realtime subscribers."""
    __tablename__ = "change_events"

    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    table_name: Mapped[str] = mapped_column(String(64), nullable=False)
    event_type: Mapped[str] = mapped_column(String(10), nullable=False)  # INSERT|UPDATE|DELETE
    record_id: Mapped[Optional[str]] = mapped_column(String(64))
    new_record: Mapped[Optional[dict]] = mapped_column(JSON)
    old_record: Mapped[Optional[dict]] = mapped_column(JSON)
    origin: Mapped[Optional[str]] = mapped_column(String(64))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        Index("ix_change_events_table_seq", "table_name", "seq"),
    )


# Remote table name -> mapped class
TABLE_MODELS = {
    "jobs": Job,
    "customers": Customer,
    "services": Service,
    "statuses": Status,
    "leads": Lead,
    "invoices": Invoice,
    "estimates": Estimate,
    "expenses": Expense,
    "payments": Payment,
    "tasks": Task,
    "tickets": Ticket,
    "settings": SettingsRecord,
}
