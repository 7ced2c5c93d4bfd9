from datetime import datetime, timezone

import pytest
from sqlalchemy.exc import IntegrityError

from conftest import FakeResult
from groupmatch.services import assignment
from groupmatch.services.assignment import (
    SlotDataError,
    TokenAssignmentError,
    assign_tokens_for_slot,
    resolve_slot_context,
    save_groups_for_slot,
)
from groupmatch.services.matching import MatchCandidate, SlotEntry

SLOT = datetime(2026, 3, 10, 10, 0, tzinfo=timezone.utc)


def _group():
    return MatchCandidate(female_pair=(4, 1), male_pair=(2, 9), score=0.9, tie_break=30)


def test_resolve_slot_context_rejects_mixed_locations():
    entries = [
        SlotEntry(1, "female", 25, "drink", "shibuya"),
        SlotEntry(2, "male", 26, "drink", "shinjuku"),
    ]
    with pytest.raises(SlotDataError, match="inconsistent"):
        resolve_slot_context(entries)


def test_resolve_slot_context_returns_shared_values():
    entries = [SlotEntry(1, "female", 25, "lunch", "ebisu"), SlotEntry(2, "male", 26, "lunch", "ebisu")]
    assert resolve_slot_context(entries) == ("ebisu", "lunch")


def test_save_groups_writes_group_members_and_history(fake_db):
    fake_db.on("FROM user_setup_slots", "FOR UPDATE", result=[{"id": 11, "user_setup_id": 101}, {"id": 12, "user_setup_id": 102}])
    fake_db.on("INSERT INTO matched_groups", result=[{"id": 55}])
    fake_db.on("UPDATE user_setup_slots", handler=lambda p: FakeResult(rowcount=2))
    fake_db.on("UPDATE user_setup s", handler=lambda p: FakeResult(rowcount=1))

    saved = save_groups_for_slot(fake_db, SLOT, "shibuya", "drink", [_group()])

    assert saved == {"skipped": False, "group_ids": [55], "slots_processed": 2, "setups_processed": 1}
    members = fake_db.sql_calls("INSERT INTO matched_group_members")
    assert [(p["user_id"], p["gender"]) for _, p in members] == [(4, "female"), (1, "female"), (2, "male"), (9, "male")]
    history = fake_db.sql_calls("INSERT INTO match_history")
    assert len(history) == 4
    assert all(p["low_id"] < p["high_id"] for _, p in history)
    assert "ON CONFLICT DO NOTHING" in history[0][0]
    _, setup_params = fake_db.sql_calls("UPDATE user_setup s")[0]
    assert setup_params["setup_ids"] == [101, 102]
    assert fake_db.commits == 0


def test_save_groups_is_noop_for_processed_slot(fake_db):
    fake_db.on("FROM user_setup_slots", "FOR UPDATE", result=[])

    saved = save_groups_for_slot(fake_db, SLOT, "shibuya", "drink", [_group()])

    assert saved["skipped"] is True
    assert saved["group_ids"] == []
    assert fake_db.sql_calls("INSERT INTO") == []
    assert fake_db.sql_calls("UPDATE user_setup") == []


def test_assign_tokens_sets_each_missing_token(fake_db):
    fake_db.on("FROM matched_groups", "FOR UPDATE", result=[{"id": 1}, {"id": 2}])
    fake_db.on("SET token = :token", handler=lambda p: [{"token": p["token"]}])
    tokens = iter(["tok_a", "tok_b"])

    assigned = assign_tokens_for_slot(fake_db, SLOT, "shibuya", "drink", token_factory=lambda: next(tokens))

    assert assigned == {1: "tok_a", 2: "tok_b"}
    assert fake_db.savepoints == 2


def test_assign_tokens_retries_after_collision(fake_db):
    fake_db.on("FROM matched_groups", "FOR UPDATE", result=[{"id": 7}])
    seen = []

    def _update(params):
        seen.append(params["token"])
        if params["token"] == "tok_dup":
            raise IntegrityError("UPDATE matched_groups", params, Exception("duplicate key"))
        return [{"token": params["token"]}]

    fake_db.on("SET token = :token", handler=_update)
    tokens = iter(["tok_dup", "tok_fresh"])

    assigned = assign_tokens_for_slot(fake_db, SLOT, "shibuya", "drink", token_factory=lambda: next(tokens))

    assert assigned == {7: "tok_fresh"}
    assert seen == ["tok_dup", "tok_fresh"]
    assert fake_db.savepoint_rollbacks == 1


def test_assign_tokens_gives_up_after_retry_budget(fake_db, monkeypatch):
    monkeypatch.setattr(assignment.config, "GROUP_TOKEN_MAX_TRIES", 3)
    fake_db.on("FROM matched_groups", "FOR UPDATE", result=[{"id": 7}])

    def _always_collide(params):
        raise IntegrityError("UPDATE matched_groups", params, Exception("duplicate key"))

    fake_db.on("SET token = :token", handler=_always_collide)

    with pytest.raises(TokenAssignmentError):
        assign_tokens_for_slot(fake_db, SLOT, "shibuya", "drink", token_factory=lambda: "tok_dup")
    assert len(fake_db.sql_calls("SET token = :token")) == 3


def test_generated_tokens_are_prefixed_and_url_safe():
    token = assignment.generate_group_token()
    assert token.startswith("tok_")
    body = token[len("tok_"):]
    assert len(body) >= 11
    assert all(ch.isalnum() or ch in "-_" for ch in body)
