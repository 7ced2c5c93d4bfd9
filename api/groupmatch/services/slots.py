from __future__ import annotations

import logging
from datetime import date, datetime

from sqlalchemy import text

from .matching import GENDERS, SlotEntry
from .scoring import Pair, history_edges_from_rows

logger = logging.getLogger(__name__)


def fetch_slots_for_date(db, target_date: date, tz: str) -> list[datetime]:
    rows = db.execute(
        text(
            """
            SELECT DISTINCT sl.slot_dt
            FROM user_setup_slots sl
            JOIN user_setup s ON s.id = sl.user_setup_id
            WHERE CAST(sl.slot_dt AT TIME ZONE :tz AS date) = CAST(:target_date AS date)
              AND sl.status = 'active'
              AND s.status = 'active'
            ORDER BY sl.slot_dt
            """
        ),
        {"tz": tz, "target_date": target_date},
    ).mappings().all()
    return [r["slot_dt"] for r in rows]


def fetch_entries_for_slot(db, slot_dt: datetime) -> list[SlotEntry]:
    rows = db.execute(
        text(
            """
            SELECT
              u.id        AS user_id,
              p.gender    AS gender,
              p.age       AS age,
              s.type_mode AS activity_type,
              s.location  AS location
            FROM user_setup_slots sl
            JOIN user_setup s    ON s.id = sl.user_setup_id
            JOIN users u         ON u.id = s.user_id
            JOIN user_profiles p ON p.user_id = u.id
            WHERE sl.slot_dt = :slot_dt
              AND sl.status = 'active'
              AND s.status = 'active'
            ORDER BY u.id
            """
        ),
        {"slot_dt": slot_dt},
    ).mappings().all()

    entries: list[SlotEntry] = []
    seen: set[int] = set()
    for row in rows:
        gender = str(row.get("gender") or "").strip().lower()
        if gender not in GENDERS or row.get("age") is None:
            logger.warning("[MATCH] skipping entry user_id=%s slot=%s gender=%r age=%r", row.get("user_id"), slot_dt, row.get("gender"), row.get("age"))
            continue
        user_id = int(row["user_id"])
        # A user registered twice for the same slot is still one applicant.
        if user_id in seen:
            continue
        seen.add(user_id)
        entries.append(
            SlotEntry(
                user_id=user_id,
                gender=gender,
                age=int(row["age"]),
                activity_type=str(row["activity_type"]),
                location=str(row["location"]),
            )
        )
    return entries


def fetch_history_edges(db) -> set[Pair]:
    rows = db.execute(
        text(
            """
            SELECT user_id_female, user_id_male
            FROM match_history
            """
        )
    ).mappings().all()
    return history_edges_from_rows(rows)
