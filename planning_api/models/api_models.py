from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field

from .models import NormalizedEvent


class LoginRequest(BaseModel):
    """
    Request body for the login-and-fetch endpoint.
    Fields are optional so missing credentials produce the facade's own 400 message.
    """
    username: Optional[str] = Field(None, description="Portal username.")
    password: Optional[str] = Field(None, description="Portal password.")


class NavigateRequest(BaseModel):
    """
    Request body for the navigate endpoint.
    """
    token: Optional[str] = Field(None, description="Session token returned by login-and-fetch.")
    # Any other value falls back to "today", like the portal widget default
    direction: Optional[str] = Field("today", description="Calendar navigation direction: next, prev or today.")


class LogoutRequest(BaseModel):
    token: Optional[str] = None


class CachedEventsRequest(BaseModel):
    username: Optional[str] = None


class LoginResponse(BaseModel):
    """
    Response body for a successful login-and-fetch.
    """
    token: str = Field(..., description="32-character lowercase hex session token.")
    events: List[NormalizedEvent] = Field(default_factory=list)
    from_cache: bool = Field(..., alias="fromCache")
    cached_at: Optional[datetime] = Field(None, alias="cachedAt")
    message: str

    class Config:
        populate_by_name = True


class NavigateResponse(BaseModel):
    events: List[NormalizedEvent] = Field(default_factory=list)


class MessageResponse(BaseModel):
    message: str


class CachedEventsResponse(BaseModel):
    events: List[NormalizedEvent] = Field(default_factory=list)
    cached_at: Optional[datetime] = Field(None, alias="cachedAt")
    fresh: bool = False

    class Config:
        populate_by_name = True


class HealthResponse(BaseModel):
    status: str = "ok"
    active_sessions: int = Field(..., alias="activeSessions")

    class Config:
        populate_by_name = True
