from __future__ import annotations

import logging
import secrets
from datetime import datetime
from typing import Any, Callable

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError

from .. import config
from .matching import MatchCandidate, SlotEntry

logger = logging.getLogger(__name__)


class SlotDataError(ValueError):
    """Entries of one slot disagree on location or activity type."""


class TokenAssignmentError(RuntimeError):
    pass


def resolve_slot_context(entries: list[SlotEntry]) -> tuple[str, str]:
    locations = sorted({e.location for e in entries})
    activity_types = sorted({e.activity_type for e in entries})
    if len(locations) != 1 or len(activity_types) != 1:
        raise SlotDataError(f"inconsistent location/type_mode: locations={locations} types={activity_types}")
    return locations[0], activity_types[0]


def lock_active_slot_rows(db, slot_dt: datetime) -> list[dict[str, Any]]:
    rows = db.execute(
        text(
            """
            SELECT id, user_setup_id
            FROM user_setup_slots
            WHERE slot_dt = :slot_dt
              AND status = 'active'
            ORDER BY id
            FOR UPDATE
            """
        ),
        {"slot_dt": slot_dt},
    ).mappings().all()
    return [dict(r) for r in rows]


def mark_slot_processed(db, slot_dt: datetime, setup_ids: list[int]) -> dict[str, int]:
    res = db.execute(
        text(
            """
            UPDATE user_setup_slots
            SET status = 'processed'
            WHERE slot_dt = :slot_dt
              AND status = 'active'
            """
        ),
        {"slot_dt": slot_dt},
    )
    slots_processed = int(res.rowcount or 0)

    setups_processed = 0
    if setup_ids:
        res = db.execute(
            text(
                """
                UPDATE user_setup s
                SET status = 'processed'
                WHERE s.id = ANY(:setup_ids)
                  AND s.status = 'active'
                  AND NOT EXISTS (
                    SELECT 1
                    FROM user_setup_slots sl
                    WHERE sl.user_setup_id = s.id
                      AND sl.status = 'active'
                  )
                """
            ),
            {"setup_ids": sorted(set(setup_ids))},
        )
        setups_processed = int(res.rowcount or 0)

    return {"slots_processed": slots_processed, "setups_processed": setups_processed}


def _insert_group(db, slot_dt: datetime, location: str, activity_type: str, group: MatchCandidate) -> int:
    group_id = db.execute(
        text(
            """
            INSERT INTO matched_groups (slot_dt, location, type_mode, status)
            VALUES (:slot_dt, :location, :type_mode, 'pending')
            RETURNING id
            """
        ),
        {"slot_dt": slot_dt, "location": location, "type_mode": activity_type},
    ).scalar()

    members = [(uid, "female") for uid in group.female_pair] + [(uid, "male") for uid in group.male_pair]
    for user_id, gender in members:
        db.execute(
            text(
                """
                INSERT INTO matched_group_members (group_id, user_id, gender)
                VALUES (:group_id, :user_id, :gender)
                """
            ),
            {"group_id": group_id, "user_id": user_id, "gender": gender},
        )

    for low_id, high_id in group.history_edges():
        db.execute(
            text(
                """
                INSERT INTO match_history (user_id_female, user_id_male, slot_dt)
                VALUES (:low_id, :high_id, :slot_dt)
                ON CONFLICT DO NOTHING
                """
            ),
            {"low_id": low_id, "high_id": high_id, "slot_dt": slot_dt},
        )
    return int(group_id)


def save_groups_for_slot(
    db,
    slot_dt: datetime,
    location: str | None,
    activity_type: str | None,
    groups: list[MatchCandidate],
) -> dict[str, Any]:
    """Write the chosen groups of one slot and mark the slot processed.

    Runs on the caller's transaction; nothing is committed here. The slot rows
    are locked first so a second run, or a concurrent one, sees the slot as
    processed and writes nothing.
    """
    slot_rows = lock_active_slot_rows(db, slot_dt)
    if not slot_rows:
        logger.info("[MATCH] slot=%s already processed, nothing saved", slot_dt)
        return {"skipped": True, "group_ids": [], "slots_processed": 0, "setups_processed": 0}

    if groups and (not location or not activity_type):
        raise SlotDataError("location and type_mode are required to save groups")

    group_ids = [_insert_group(db, slot_dt, location, activity_type, g) for g in groups]
    marked = mark_slot_processed(db, slot_dt, [int(r["user_setup_id"]) for r in slot_rows])

    logger.info(
        "[MATCH] saved slot=%s location=%s type=%s groups=%s slots_processed=%s setups_processed=%s",
        slot_dt,
        location,
        activity_type,
        len(group_ids),
        marked["slots_processed"],
        marked["setups_processed"],
    )
    return {"skipped": False, "group_ids": group_ids, **marked}


def generate_group_token() -> str:
    return f"{config.GROUP_TOKEN_PREFIX}{secrets.token_urlsafe(config.GROUP_TOKEN_BYTES)}"


def _set_group_token(db, group_id: int, token_factory: Callable[[], str]) -> str | None:
    for attempt in range(1, config.GROUP_TOKEN_MAX_TRIES + 1):
        token = token_factory()
        try:
            with db.begin_nested():
                row = db.execute(
                    text(
                        """
                        UPDATE matched_groups
                        SET token = :token
                        WHERE id = :id
                          AND token IS NULL
                        RETURNING token
                        """
                    ),
                    {"token": token, "id": group_id},
                ).mappings().first()
        except IntegrityError:
            logger.warning("[MATCH] token collision group_id=%s attempt=%s", group_id, attempt)
            continue
        return str(row["token"]) if row else None
    raise TokenAssignmentError(f"could not assign a unique token to group_id={group_id}")


def assign_tokens_for_slot(
    db,
    slot_dt: datetime,
    location: str,
    activity_type: str,
    token_factory: Callable[[], str] = generate_group_token,
) -> dict[int, str]:
    rows = db.execute(
        text(
            """
            SELECT id
            FROM matched_groups
            WHERE slot_dt = :slot_dt
              AND location = :location
              AND type_mode = :type_mode
              AND token IS NULL
            ORDER BY id
            FOR UPDATE
            """
        ),
        {"slot_dt": slot_dt, "location": location, "type_mode": activity_type},
    ).mappings().all()

    assigned: dict[int, str] = {}
    for row in rows:
        group_id = int(row["id"])
        token = _set_group_token(db, group_id, token_factory)
        if token:
            assigned[group_id] = token
    if assigned:
        logger.info("[MATCH] tokens assigned slot=%s group_ids=%s", slot_dt, sorted(assigned))
    return assigned
