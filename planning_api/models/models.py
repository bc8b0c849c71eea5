# planning_api/models/models.py
from datetime import datetime
from typing import Any, List, Literal, Optional, Union
from pydantic import BaseModel, Field, field_validator

from ..core.constants import UNTITLED_COURSE

# Fixed set of category tags produced by the event type classifier
EventType = Literal["cm", "td", "tp", "exam", "projet", "reunion", "cours"]


class RawCalendarEntry(BaseModel):
    """
    One event as read from the portal by an extraction strategy.

    Field names follow the portal/widget payload (className, allDay, is_empty,
    is_break) so native objects can be validated directly.
    """
    id: Optional[str] = None
    title: str = ""
    start: Union[str, int, float, None] = None
    end: Union[str, int, float, None] = None
    class_names: str = Field("", alias="className")
    all_day: bool = Field(False, alias="allDay")
    is_empty: bool = False
    is_break: bool = False

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any) -> Optional[str]:
        # The portal sometimes sends numeric ids
        if v is None or v == "":
            return None
        return str(v)

    @field_validator("title", mode="before")
    @classmethod
    def coerce_title(cls, v: Any) -> str:
        return "" if v is None else str(v)

    @field_validator("class_names", mode="before")
    @classmethod
    def flatten_class_names(cls, v: Any) -> str:
        # FullCalendar accepts className as a string or a list of strings
        if v is None:
            return ""
        if isinstance(v, (list, tuple)):
            return " ".join(str(c) for c in v if c)
        return str(v)

    @field_validator("all_day", "is_empty", "is_break", mode="before")
    @classmethod
    def coerce_flags(cls, v: Any) -> bool:
        return bool(v)

    class Config:
        populate_by_name = True
        extra = "ignore"


class NormalizedEvent(BaseModel):
    id: str
    title: str
    room: Optional[str] = None
    professor: Optional[str] = None
    group: Optional[str] = None
    start: Optional[str] = None  # ISO-8601 when parseable, raw portal text otherwise
    end: Optional[str] = None
    type: EventType = "cours"
    raw_title: str = Field("", alias="rawTitle")
    all_day: bool = Field(False, alias="allDay")

    @field_validator("title", mode="before")
    @classmethod
    def title_never_empty(cls, v: Any) -> str:
        if v is None or not str(v).strip():
            return UNTITLED_COURSE
        return str(v)

    class Config:
        populate_by_name = True
        frozen = True
        json_schema_extra = {
            "example": {
                "id": "1042",
                "title": "Algorithmique",
                "room": "B201",
                "professor": "M. Dupont",
                "group": None,
                "start": "2024-03-04T08:00:00",
                "end": "2024-03-04T10:00:00",
                "type": "td",
                "rawTitle": "Algorithmique\nM. Dupont\nB201",
                "allDay": False,
            }
        }


class CacheRecord(BaseModel):
    owner_identity: str
    events: List[NormalizedEvent] = Field(default_factory=list)
    last_updated_at: datetime

    class Config:
        frozen = True
