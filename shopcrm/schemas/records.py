from typing import Optional
from pydantic import BaseModel, field_validator


class JobStatusChange(BaseModel):
    status: str
    note: Optional[str] = None
    notify: bool = True

    @field_validator("status", "note", mode="before")
    @classmethod
    def empty_to_none(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return v or None


class JobImageUpload(BaseModel):
    status: str
    # base64 payload, with or without a data: URL prefix
    data: str


class TicketReplyCreate(BaseModel):
    message: str
    author: Optional[str] = None
    is_staff: Optional[bool] = True


class LoginRequest(BaseModel):
    username: str
    password: str
