"""
Pydantic models used by the Home Digest API.

Notes:
- Settings fields are optional so /api/settings can accept partial updates.
- Profile updates are partial too: only the keys sent are written.
"""

from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from homedigest.app.util import WEEKDAYS

DigestType = Literal["daily", "weekly", "on_demand"]
Priority = Literal["critical", "normal", "low", "ignore"]
Weekday = Literal[tuple(WEEKDAYS)]


# ---------- Digests ----------

class DigestRequest(BaseModel):
    """Trigger a digest. 'type' defaults per endpoint when omitted."""
    type: Optional[DigestType] = None


# ---------- Dismissals / notes ----------

class DismissRequest(BaseModel):
    title: str = Field(..., min_length=1)


class NoteIn(BaseModel):
    title: str = Field(..., min_length=1)
    note: str = Field(..., min_length=1)


class NoteUpdate(BaseModel):
    note: str = Field(..., min_length=1)


# ---------- Profile / entities ----------

class ProfileUpdate(BaseModel):
    """Known keys are typed loosely; unknown keys are stored as-is."""
    model_config = ConfigDict(extra="allow")

    occupants: Optional[Any] = None
    schedule: Optional[Any] = None
    priorities: Optional[Any] = None
    concerns: Optional[str] = None
    setup_complete: Optional[bool] = None


class MonitoredEntityIn(BaseModel):
    entity_id: str = Field(..., pattern=r"^[a-z_]+\.[A-Za-z0-9_]+$")
    friendly_name: Optional[str] = None
    domain: Optional[str] = None
    category: str = "other"
    priority: Priority = "normal"
    storage_strategy: str = "daily_snapshot"


class EntitiesUpdate(BaseModel):
    entities: List[MonitoredEntityIn]


# ---------- Settings (all optional for PATCH-like behavior) ----------

class Settings(BaseModel):
    """
    Mirrors the keys in homedigest.app.config.DEFAULTS:
    - Keep every field Optional so missing values mean "leave unchanged".
    """
    openai_api_key: Optional[str] = None
    model: Optional[str] = None
    digest_time: Optional[str] = Field(None, pattern=r"^\d{2}:\d{2}$")
    weekly_digest_day: Optional[Weekday] = None
    snapshot_interval_minutes: Optional[int] = Field(None, ge=1)
    history_days: Optional[int] = Field(None, ge=1)
    notification_service: Optional[str] = None
    generation_timeout: Optional[float] = Field(None, gt=0)
    language: Optional[str] = None
    log_level: Optional[str] = None

    @field_validator("digest_time")
    @classmethod
    def _valid_time_of_day(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        hour, minute = map(int, v.split(":"))
        if hour > 23 or minute > 59:
            raise ValueError("digest_time must be a valid HH:MM time")
        return v
