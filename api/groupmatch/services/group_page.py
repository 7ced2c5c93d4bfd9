from __future__ import annotations

from datetime import datetime, time, timedelta, timezone
from typing import Any
from zoneinfo import ZoneInfo

from sqlalchemy import text

from .. import config


class GroupNotFound(LookupError):
    pass


class GroupExpired(Exception):
    def __init__(self, expires_at: datetime) -> None:
        super().__init__(f"group page expired at {expires_at.isoformat()}")
        self.expires_at = expires_at


def compute_group_expiry(slot_dt: datetime, tz: str | None = None) -> datetime:
    """End of the local day after the slot (23:59:59 in MATCH_TIMEZONE)."""
    zone = ZoneInfo(tz or config.MATCH_TIMEZONE)
    if slot_dt.tzinfo is None:
        slot_dt = slot_dt.replace(tzinfo=timezone.utc)
    next_day = slot_dt.astimezone(zone).date() + timedelta(days=1)
    return datetime.combine(next_day, time(23, 59, 59), tzinfo=zone)


def resolve_group_by_token(db, token: str, now: datetime | None = None) -> dict[str, Any]:
    now = now or datetime.now(timezone.utc)
    group = db.execute(
        text(
            """
            SELECT id, token, slot_dt, location, type_mode, status
            FROM matched_groups
            WHERE token = :token
            """
        ),
        {"token": token},
    ).mappings().first()
    if not group:
        raise GroupNotFound(token)

    expires_at = compute_group_expiry(group["slot_dt"])
    if now > expires_at:
        raise GroupExpired(expires_at)

    members = db.execute(
        text(
            """
            SELECT
              m.user_id,
              m.gender,
              p.nickname,
              p.age,
              p.occupation,
              p.photo_url,
              p.photo_masked_url
            FROM matched_group_members m
            LEFT JOIN user_profiles p ON p.user_id = m.user_id
            WHERE m.group_id = :group_id
            ORDER BY CASE m.gender WHEN 'female' THEN 0 ELSE 1 END, m.user_id
            """
        ),
        {"group_id": group["id"]},
    ).mappings().all()

    return {
        "ok": True,
        "group": {
            "id": int(group["id"]),
            "token": group["token"],
            "slot_dt": group["slot_dt"],
            "location": group["location"],
            "type_mode": group["type_mode"],
            "status": group["status"],
            "expires_at": expires_at,
        },
        "members": [dict(m) for m in members],
    }
