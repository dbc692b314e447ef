from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field


STATE_VERSION = 1


class PersistedDocument(BaseModel):
    """The single document written under the state storage key."""
    state: Dict[str, Any] = Field(default_factory=dict)
    version: int = STATE_VERSION


class ExportBundle(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    jobs: List[Dict[str, Any]] = Field(default_factory=list)
    customers: List[Dict[str, Any]] = Field(default_factory=list)
    services: List[Dict[str, Any]] = Field(default_factory=list)
    statuses: List[Dict[str, Any]] = Field(default_factory=list)
    settings: Dict[str, Any] = Field(default_factory=dict)
    exported_at: Optional[str] = Field(default=None, alias="exportedAt")
