from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Any
from zoneinfo import ZoneInfo

from .. import config
from ..database import SessionLocal
from .assignment import SlotDataError, assign_tokens_for_slot, resolve_slot_context, save_groups_for_slot
from .matching import select_groups
from .notifications import dispatch_line_notifications, enqueue_notifications_for_slot
from .scoring import Pair
from .slots import fetch_entries_for_slot, fetch_history_edges, fetch_slots_for_date

logger = logging.getLogger(__name__)


def tomorrow_in_timezone(now: datetime, tz: str) -> date:
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return (now.astimezone(ZoneInfo(tz)) + timedelta(days=1)).date()


def _empty_result(slot_dt: datetime) -> dict[str, Any]:
    return {
        "slot_dt": slot_dt,
        "entries_count": 0,
        "matched_count": 0,
        "unmatched_count": 0,
        "group_ids": [],
        "notifications_enqueued": 0,
        "error": None,
    }


def _process_slot(slot_dt: datetime, history: set[Pair], now: datetime, dispatch: bool) -> dict[str, Any]:
    """Persist, tokenize and enqueue one slot in a single transaction.

    A processed slot still goes through the enqueue step, so a re-run picks up
    any token-bearing group whose notifications are missing.
    """
    result = _empty_result(slot_dt)
    selection = None

    with SessionLocal() as db:
        entries = fetch_entries_for_slot(db, slot_dt)
        result["entries_count"] = len(entries)

        try:
            if entries:
                location, activity_type = resolve_slot_context(entries)
                selection = select_groups(entries, history, config.MATCH_SCORE_THRESHOLD)
                saved = save_groups_for_slot(db, slot_dt, location, activity_type, selection.matched)
                if not saved["skipped"]:
                    assign_tokens_for_slot(db, slot_dt, location, activity_type)
            else:
                saved = save_groups_for_slot(db, slot_dt, None, None, [])
            result["notifications_enqueued"] = enqueue_notifications_for_slot(db, slot_dt, now)
            db.commit()
        except Exception:
            db.rollback()
            raise

    if selection is not None and not saved["skipped"]:
        for group in selection.matched:
            history.update(group.history_edges())
        result["matched_count"] = len(selection.matched)
        result["unmatched_count"] = len(selection.unmatched)
        result["group_ids"] = saved["group_ids"]
    elif saved["skipped"]:
        logger.info("[MATCH] slot=%s already processed, enqueued=%s", slot_dt, result["notifications_enqueued"])

    if dispatch:
        try:
            dispatch_line_notifications(config.LINE_IMMEDIATE_DISPATCH_LIMIT, now=now)
        except Exception as exc:
            logger.warning("[LINE] immediate dispatch failed slot=%s error=%s", slot_dt, exc)

    logger.info(
        "[MATCH] slot=%s entries=%s matched=%s unmatched=%s groups=%s enqueued=%s",
        slot_dt,
        result["entries_count"],
        result["matched_count"],
        result["unmatched_count"],
        result["group_ids"],
        result["notifications_enqueued"],
    )
    return result


def run_matching_for_slot(
    slot_dt: datetime,
    *,
    history: set[Pair] | None = None,
    now: datetime | None = None,
    dispatch: bool = False,
) -> dict[str, Any]:
    now = now or datetime.now(timezone.utc)
    if history is None:
        with SessionLocal() as db:
            history = fetch_history_edges(db)
    try:
        return _process_slot(slot_dt, history, now, dispatch)
    except SlotDataError as exc:
        logger.warning("[MATCH] slot=%s skipped: %s", slot_dt, exc)
        return {**_empty_result(slot_dt), "error": str(exc)}
    except Exception as exc:
        logger.exception("[MATCH] slot=%s failed", slot_dt)
        return {**_empty_result(slot_dt), "error": f"{exc.__class__.__name__}: {exc}"}


def run_daily_matching(
    target_date: date | None = None,
    *,
    now: datetime | None = None,
    dispatch: bool = True,
) -> dict[str, Any]:
    """Match every slot of `target_date` (tomorrow in MATCH_TIMEZONE by default).

    Slots run one after another. A failing slot is recorded in its result and
    the run moves on; this function does not raise for slot failures.
    """
    now = now or datetime.now(timezone.utc)
    target_date = target_date or tomorrow_in_timezone(now, config.MATCH_TIMEZONE)

    with SessionLocal() as db:
        slots = fetch_slots_for_date(db, target_date, config.MATCH_TIMEZONE)
        history = fetch_history_edges(db)

    logger.info("[MATCH] daily run date=%s slots=%s history_edges=%s", target_date, len(slots), len(history))

    results = [run_matching_for_slot(slot_dt, history=history, now=now, dispatch=dispatch) for slot_dt in slots]
    return {"ok": True, "date": target_date, "slot_count": len(slots), "results": results}
