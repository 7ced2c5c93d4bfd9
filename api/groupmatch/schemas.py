from datetime import date as Date, datetime
from typing import Any, Optional
from pydantic import BaseModel, Field


class DailyMatchingRequest(BaseModel):
    target_date: Optional[Date] = None
    dispatch: bool = True


class ManualMatchingRequest(BaseModel):
    slot_dt: datetime
    dispatch: bool = False


class SlotResult(BaseModel):
    slot_dt: datetime
    entries_count: int
    matched_count: int
    unmatched_count: int
    group_ids: list[int] = Field(default_factory=list)
    notifications_enqueued: int
    error: Optional[str] = None


class DailyMatchingResponse(BaseModel):
    ok: bool
    date: Date
    slot_count: int
    results: list[SlotResult] = Field(default_factory=list)


class DispatchResponse(BaseModel):
    ok: bool
    picked: int
    sent: int
    failed: int
    processed: list[dict[str, Any]] = Field(default_factory=list)


class GroupInfo(BaseModel):
    id: int
    token: str
    slot_dt: datetime
    location: str
    type_mode: str
    status: str
    expires_at: datetime


class GroupMember(BaseModel):
    user_id: int
    gender: str
    nickname: Optional[str] = None
    age: Optional[int] = None
    occupation: Optional[str] = None
    photo_url: Optional[str] = None
    photo_masked_url: Optional[str] = None


class GroupPageResponse(BaseModel):
    ok: bool
    group: GroupInfo
    members: list[GroupMember] = Field(default_factory=list)
