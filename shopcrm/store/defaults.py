"""
Seed data for a brand-new store.

Seeded lookup records use stable ids so two fresh installs converge on the
same rows once they sync.
"""
import copy
from typing import Any, Dict, List

from ..auth.security import get_password_hash
from ..services.data_transform import utc_now_iso


DEFAULT_STATUSES = [
    {"id": "received", "name": "Received", "color": "#6366f1", "order": 1},
    {"id": "assessment", "name": "Assessment", "color": "#f59e0b", "order": 2},
    {"id": "in-progress", "name": "In Progress", "color": "#3b82f6", "order": 3},
    {"id": "painting", "name": "Painting", "color": "#ec4899", "order": 4},
    {"id": "detailing", "name": "Detailing", "color": "#8b5cf6", "order": 5},
    {"id": "quality-check", "name": "Quality Check", "color": "#14b8a6", "order": 6},
    {"id": "ready", "name": "Ready for Pickup", "color": "#22c55e", "order": 7},
    {"id": "delivered", "name": "Delivered", "color": "#64748b", "order": 8},
]

DEFAULT_SERVICES = [
    {"id": "svc-full-body-wrap", "name": "Full Body Wrap", "price": 150000, "duration": "3-5 days"},
    {"id": "svc-paint-protection-film", "name": "Paint Protection Film", "price": 120000, "duration": "2-3 days"},
    {"id": "svc-ceramic-coating", "name": "Ceramic Coating", "price": 45000, "duration": "1-2 days"},
    {"id": "svc-custom-paint-job", "name": "Custom Paint Job", "price": 250000, "duration": "7-14 days"},
    {"id": "svc-interior-customization", "name": "Interior Customization", "price": 80000, "duration": "3-5 days"},
    {"id": "svc-wheel-customization", "name": "Wheel Customization", "price": 35000, "duration": "1-2 days"},
    {"id": "svc-window-tinting", "name": "Window Tinting", "price": 15000, "duration": "1 day"},
    {"id": "svc-audio-system-upgrade", "name": "Audio System Upgrade", "price": 60000, "duration": "2-3 days"},
]

DEFAULT_LEAD_STATUSES = [
    {"id": "new", "name": "New", "color": "#6366f1", "order": 1},
    {"id": "contacted", "name": "Contacted", "color": "#f59e0b", "order": 2},
    {"id": "qualified", "name": "Qualified", "color": "#3b82f6", "order": 3},
    {"id": "proposal", "name": "Proposal Sent", "color": "#8b5cf6", "order": 4},
    {"id": "negotiation", "name": "Negotiation", "color": "#ec4899", "order": 5},
    {"id": "won", "name": "Won", "color": "#22c55e", "order": 6},
    {"id": "lost", "name": "Lost", "color": "#ef4444", "order": 7},
]

DEFAULT_EXPENSE_CATEGORIES = [
    {"id": "exp-materials", "name": "Materials & Supplies", "color": "#6366f1"},
    {"id": "exp-equipment", "name": "Equipment", "color": "#f59e0b"},
    {"id": "exp-utilities", "name": "Utilities", "color": "#3b82f6"},
    {"id": "exp-rent", "name": "Rent", "color": "#8b5cf6"},
    {"id": "exp-salaries", "name": "Salaries", "color": "#ec4899"},
    {"id": "exp-marketing", "name": "Marketing", "color": "#14b8a6"},
    {"id": "exp-transportation", "name": "Transportation", "color": "#22c55e"},
    {"id": "exp-other", "name": "Other", "color": "#64748b"},
]

DEFAULT_TICKET_STATUSES = [
    {"id": "open", "name": "Open", "color": "#3b82f6"},
    {"id": "in-progress", "name": "In Progress", "color": "#f59e0b"},
    {"id": "answered", "name": "Answered", "color": "#8b5cf6"},
    {"id": "closed", "name": "Closed", "color": "#22c55e"},
]

DEFAULT_TICKET_PRIORITIES = [
    {"id": "low", "name": "Low", "color": "#64748b"},
    {"id": "medium", "name": "Medium", "color": "#f59e0b"},
    {"id": "high", "name": "High", "color": "#ef4444"},
    {"id": "urgent", "name": "Urgent", "color": "#dc2626"},
]

DEFAULT_SETTINGS: Dict[str, Any] = {
    "businessName": "Custom Shop",
    "currency": "INR",
    "theme": "dark",
    "taxRate": 18,
    "invoicePrefix": "INV-",
    "estimatePrefix": "EST-",
    "ticketPrefix": "TKT-",
    "nextInvoiceNumber": 1001,
    "nextEstimateNumber": 1001,
    "nextTicketNumber": 1001,
    "whatsapp": {
        "enabled": False,
        "phone": "",
        "apiKey": "",
        "notifyNewJob": True,
        "notifyStatusChange": True,
        "notifyJobComplete": True,
        "notifyNewCustomer": False,
    },
    "email": {
        "enabled": False,
        "notifyEstimateSent": True,
    },
}

DEFAULT_USERS = [
    {"username": "admin", "password": "admin123", "role": "admin", "name": "Administrator", "email": "admin@example.com"},
    {"username": "manager", "password": "manager123", "role": "manager", "name": "Manager", "email": "manager@example.com"},
]


def default_users() -> List[Dict[str, Any]]:
    now = utc_now_iso()
    users = []
    for user in DEFAULT_USERS:
        record = dict(user)
        record["id"] = f"user-{user['username']}"
        record["password"] = get_password_hash(user["password"])
        record["createdAt"] = now
        record["updatedAt"] = now
        users.append(record)
    return users


_SEEDED = {
    "statuses": DEFAULT_STATUSES,
    "services": DEFAULT_SERVICES,
    "leadStatuses": DEFAULT_LEAD_STATUSES,
    "expenseCategories": DEFAULT_EXPENSE_CATEGORIES,
    "ticketStatuses": DEFAULT_TICKET_STATUSES,
    "ticketPriorities": DEFAULT_TICKET_PRIORITIES,
    "settings": DEFAULT_SETTINGS,
}


def default_collection(name: str) -> Any:
    """Initial value for one collection (or the settings singleton)."""
    if name == "users":
        return default_users()
    if name in _SEEDED:
        return copy.deepcopy(_SEEDED[name])
    return []


def default_state(names) -> Dict[str, Any]:
    return {name: default_collection(name) for name in names}
