from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from conftest import FakeDB
from groupmatch.services.group_page import GroupExpired, GroupNotFound, compute_group_expiry, resolve_group_by_token
from groupmatch.services.rate_limit import SlidingWindowLimiter

JST = ZoneInfo("Asia/Tokyo")


def test_expiry_is_end_of_next_local_day():
    slot = datetime(2026, 3, 10, 19, 0, tzinfo=JST)
    assert compute_group_expiry(slot, "Asia/Tokyo") == datetime(2026, 3, 11, 23, 59, 59, tzinfo=JST)


def test_expiry_uses_local_date_not_utc_date():
    # 2026-03-10 23:30 JST is still 2026-03-10 14:30 UTC.
    slot = datetime(2026, 3, 10, 14, 30, tzinfo=timezone.utc)
    assert compute_group_expiry(slot, "Asia/Tokyo") == datetime(2026, 3, 11, 23, 59, 59, tzinfo=JST)
    # 2026-03-10 16:00 UTC is already 2026-03-11 in Tokyo.
    late = datetime(2026, 3, 10, 16, 0, tzinfo=timezone.utc)
    assert compute_group_expiry(late, "Asia/Tokyo") == datetime(2026, 3, 12, 23, 59, 59, tzinfo=JST)


def _db(slot_dt):
    db = FakeDB()
    db.on("FROM matched_groups", result=[{"id": 4, "token": "tok_x", "slot_dt": slot_dt, "location": "ebisu", "type_mode": "lunch", "status": "pending"}])
    db.on("FROM matched_group_members", result=[{"user_id": 1, "gender": "female", "nickname": "A", "age": 24, "occupation": None, "photo_url": "/p/1.jpg", "photo_masked_url": None}])
    return db


def test_resolve_group_before_and_after_expiry():
    slot = datetime(2026, 3, 10, 19, 0, tzinfo=JST)
    expires = compute_group_expiry(slot, "Asia/Tokyo")

    page = resolve_group_by_token(_db(slot), "tok_x", now=expires)
    assert page["group"]["id"] == 4
    assert page["members"][0]["nickname"] == "A"
    assert page["group"]["token"] == "tok_x"
    assert page["members"][0]["photo_url"] == "/p/1.jpg"
    assert "photo_masked_url" in page["members"][0]

    with pytest.raises(GroupExpired):
        resolve_group_by_token(_db(slot), "tok_x", now=expires + timedelta(seconds=1))


def test_resolve_unknown_token():
    with pytest.raises(GroupNotFound):
        resolve_group_by_token(FakeDB(), "tok_nope", now=datetime(2026, 3, 10, tzinfo=timezone.utc))


def test_sliding_window_limiter():
    clock = {"t": 1000.0}
    limiter = SlidingWindowLimiter(clock=lambda: clock["t"])

    assert limiter.check("g:1.2.3.4", limit=2, window_seconds=60).allowed
    assert limiter.check("g:1.2.3.4", limit=2, window_seconds=60).allowed
    blocked = limiter.check("g:1.2.3.4", limit=2, window_seconds=60)
    assert not blocked.allowed
    assert blocked.retry_after_seconds == 60
    assert limiter.check("g:5.6.7.8", limit=2, window_seconds=60).allowed

    clock["t"] += 61
    assert limiter.check("g:1.2.3.4", limit=2, window_seconds=60).allowed
