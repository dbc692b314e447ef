from datetime import datetime
from typing import Any, Dict, Optional
from pydantic import BaseModel, Field


class GatewayResult(BaseModel):
    """Outcome of one remote table call. ``error`` is set instead of raising."""
    data: Any = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class SyncResult(BaseModel):
    success: bool
    message: str
    busy: bool = False
    # collection -> record count sent or received
    counts: Dict[str, int] = Field(default_factory=dict)
    # collection -> error message
    errors: Dict[str, str] = Field(default_factory=dict)


class SyncStatus(BaseModel):
    is_configured: bool
    state: str
    is_syncing: bool
    last_sync_time: Optional[datetime] = None
    subscriptions: int = 0
    last_errors: Dict[str, str] = Field(default_factory=dict)


class RealtimeEvent(BaseModel):
    """One row of the remote change feed, records in remote (snake_case) shape."""
    seq: int
    table: str
    event_type: str  # INSERT|UPDATE|DELETE
    new: Optional[Dict[str, Any]] = None
    old: Optional[Dict[str, Any]] = None
    origin: Optional[str] = None


class PullRequest(BaseModel):
    strategy: str = Field(default="merge", pattern="^(replace|merge)$")
