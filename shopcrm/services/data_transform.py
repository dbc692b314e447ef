"""
Translate records between the local shape (camelCase) and the remote
table shape (snake_case).

Only the fields listed in ``FIELD_MAP`` are renamed; everything else passes
through untouched. Date fields coming back from the remote side are parsed
and re-emitted in the canonical ``YYYY-MM-DDTHH:MM:SS.mmmZ`` form, or set to
``None`` when they cannot be parsed.
"""
from datetime import date, datetime, timezone
from typing import Any, Dict, Optional


# local (camelCase) -> remote (snake_case)
FIELD_MAP: Dict[str, str] = {
    "createdAt": "created_at",
    "updatedAt": "updated_at",
    "customerId": "customer_id",
    "invoiceId": "invoice_id",
    "jobId": "job_id",
    "invoiceNumber": "invoice_number",
    "estimateNumber": "estimate_number",
    "ticketNumber": "ticket_number",
    "publicToken": "public_token",
    "validUntil": "valid_until",
    "dueDate": "due_date",
    "categoryId": "category_id",
    "assignedTo": "assigned_to",
    "vehicleMake": "vehicle_make",
    "vehicleModel": "vehicle_model",
    "vehicleYear": "vehicle_year",
    "vehicleColor": "vehicle_color",
    "licensePlate": "license_plate",
    "estimatedCompletion": "estimated_completion",
    "totalPrice": "total_price",
    "acceptedAt": "accepted_at",
    "declinedAt": "declined_at",
    "convertedAt": "converted_at",
}

REVERSE_FIELD_MAP: Dict[str, str] = {v: k for k, v in FIELD_MAP.items()}

DATE_FIELDS = frozenset({
    "created_at",
    "updated_at",
    "valid_until",
    "due_date",
    "estimated_completion",
    "accepted_at",
    "declined_at",
    "converted_at",
})

_FALLBACK_FORMATS = (
    "%Y-%m-%d %H:%M:%S",
    "%Y/%m/%d",
    "%d/%m/%Y",
    "%b %d, %Y",
    "%B %d, %Y",
)


def format_timestamp(value: datetime) -> str:
    """Render a datetime in the canonical UTC millisecond form."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def utc_now_iso() -> str:
    return format_timestamp(datetime.now(timezone.utc))


def _parse_datetime(text: str) -> Optional[datetime]:
    raw = text.strip()
    if not raw:
        return None
    candidate = raw[:-1] + "+00:00" if raw.endswith(("Z", "z")) else raw
    try:
        return datetime.fromisoformat(candidate)
    except ValueError:
        pass
    for fmt in _FALLBACK_FORMATS:
        try:
            return datetime.strptime(raw, fmt)
        except ValueError:
            continue
    return None


def safe_date_parse(value: Any) -> Optional[str]:
    """
    Normalize a date-ish value to the canonical string.

    Returns None for empty, unparsable or non date-like values instead of
    raising.
    """
    if not value:
        return None
    try:
        if isinstance(value, datetime):
            return format_timestamp(value)
        if isinstance(value, date):
            return format_timestamp(datetime(value.year, value.month, value.day, tzinfo=timezone.utc))
        if isinstance(value, str):
            parsed = _parse_datetime(value)
            return format_timestamp(parsed) if parsed is not None else None
    except (ValueError, OverflowError, OSError):
        return None
    return None


def to_remote(data: Any, table_name: Optional[str] = None) -> Any:
    """camelCase record (or list of records) -> remote column names."""
    if isinstance(data, list):
        return [to_remote(item, table_name) for item in data]
    if not isinstance(data, dict):
        return data

    transformed: Dict[str, Any] = {}
    for key, value in data.items():
        if key in REVERSE_FIELD_MAP and REVERSE_FIELD_MAP[key] in data:
            # The camelCase twin wins
            continue
        transformed[FIELD_MAP.get(key, key)] = value
    return transformed


def from_remote(data: Any, table_name: Optional[str] = None) -> Any:
    """Remote row(s) -> camelCase record(s), with date fields sanitized."""
    if isinstance(data, list):
        return [from_remote(item, table_name) for item in data]
    if not isinstance(data, dict):
        return data

    transformed: Dict[str, Any] = {}
    for key, value in data.items():
        if key in FIELD_MAP and FIELD_MAP[key] in data:
            # The snake_case twin wins
            continue
        if key in DATE_FIELDS:
            value = safe_date_parse(value)
        transformed[REVERSE_FIELD_MAP.get(key, key)] = value
    return transformed
