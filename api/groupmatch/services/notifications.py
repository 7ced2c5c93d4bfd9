from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from functools import partial
from typing import Any, Callable
from urllib.parse import quote

from sqlalchemy import text

from .. import config
from ..database import SessionLocal
from .line_push import push_line_text

logger = logging.getLogger(__name__)

MESSAGE_TEMPLATE = (
    "マッチングが成立しました！\n"
    "グループページはこちら：\n"
    "{url}\n\n"
    "※このURLは共有に注意してください。"
)

PushFn = Callable[[str, str], None]


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def build_group_url(token: str) -> str:
    return f"{config.FRONT_ORIGIN}/g/{quote(token, safe='')}"


def build_message_text(token: str) -> str:
    return MESSAGE_TEMPLATE.format(url=build_group_url(token))


def backoff_delay(attempts: int) -> timedelta:
    schedule = config.LINE_RETRY_BACKOFF_MINUTES
    idx = min(max(attempts - 1, 0), len(schedule) - 1)
    return timedelta(minutes=schedule[idx])


def fetch_notifiable_members(db, slot_dt: datetime) -> list[dict[str, Any]]:
    rows = db.execute(
        text(
            """
            SELECT
              g.id AS group_id,
              g.token,
              m.user_id,
              u.line_user_id
            FROM matched_groups g
            JOIN matched_group_members m ON m.group_id = g.id
            JOIN users u ON u.id = m.user_id
            WHERE g.slot_dt = :slot_dt
              AND g.token IS NOT NULL
              AND g.token <> ''
              AND u.line_user_id IS NOT NULL
              AND u.line_user_id <> ''
            ORDER BY g.id, m.user_id
            """
        ),
        {"slot_dt": slot_dt},
    ).mappings().all()
    return [dict(r) for r in rows]


def enqueue_notifications_for_slot(db, slot_dt: datetime, now: datetime | None = None) -> int:
    """Queue one LINE message per member of every token-bearing group of the slot.

    Safe to call repeatedly: (group_id, user_id) is unique and conflicts are
    ignored, so only missing rows are inserted. Returns the number inserted.
    """
    now = now or _now_utc()
    inserted = 0
    for member in fetch_notifiable_members(db, slot_dt):
        row = db.execute(
            text(
                """
                INSERT INTO line_notifications (
                  group_id, user_id, line_user_id, message_text, status, attempts, next_retry_at
                )
                VALUES (:group_id, :user_id, :line_user_id, :message_text, 'pending', 0, :next_retry_at)
                ON CONFLICT (group_id, user_id) DO NOTHING
                RETURNING id
                """
            ),
            {
                "group_id": int(member["group_id"]),
                "user_id": int(member["user_id"]),
                "line_user_id": str(member["line_user_id"]),
                "message_text": build_message_text(str(member["token"])),
                "next_retry_at": now,
            },
        ).mappings().first()
        if row:
            inserted += 1
    logger.info("[LINE] enqueue slot=%s inserted=%s", slot_dt, inserted)
    return inserted


def claim_due_notifications(db, limit: int, now: datetime) -> list[dict[str, Any]]:
    stale_before = now - timedelta(minutes=config.LINE_PROCESSING_TIMEOUT_MINUTES)
    rows = db.execute(
        text(
            """
            WITH picked AS (
              SELECT id
              FROM line_notifications
              WHERE (status IN ('pending', 'failed') AND next_retry_at <= :now)
                 OR (status = 'processing' AND claimed_at <= :stale_before)
              ORDER BY next_retry_at ASC, id ASC
              LIMIT :limit
              FOR UPDATE SKIP LOCKED
            )
            UPDATE line_notifications n
            SET status = 'processing',
                claimed_at = :now
            FROM picked
            WHERE n.id = picked.id
            RETURNING n.id, n.group_id, n.user_id, n.line_user_id, n.message_text, n.attempts
            """
        ),
        {"now": now, "stale_before": stale_before, "limit": limit},
    ).mappings().all()
    return sorted((dict(r) for r in rows), key=lambda r: int(r["id"]))


def mark_notification_sent(db, notification_id: int, now: datetime, claimed_at: datetime | None = None) -> bool:
    res = db.execute(
        text(
            """
            UPDATE line_notifications
            SET status = 'sent',
                sent_at = :now,
                last_error = NULL
            WHERE id = :id
              AND status = 'processing'
              AND claimed_at = :claimed_at
            """
        ),
        {"id": notification_id, "now": now, "claimed_at": claimed_at or now},
    )
    return bool(res.rowcount)


def mark_notification_failed(
    db,
    notification_id: int,
    attempts: int,
    error: str,
    now: datetime,
    claimed_at: datetime | None = None,
) -> dict[str, Any]:
    """Record a failed delivery; `attempts` is the count after this failure.

    Only the claim identified by `claimed_at` (defaults to `now`) may write the
    outcome; a row reclaimed by another dispatcher is left alone.
    """
    status = "failed"
    if config.LINE_MAX_ATTEMPTS > 0 and attempts >= config.LINE_MAX_ATTEMPTS:
        status = "abandoned"
    next_retry_at = now + backoff_delay(attempts)
    res = db.execute(
        text(
            """
            UPDATE line_notifications
            SET status = :status,
                attempts = :attempts,
                next_retry_at = :next_retry_at,
                last_error = :last_error
            WHERE id = :id
              AND status = 'processing'
              AND claimed_at = :claimed_at
            """
        ),
        {
            "id": notification_id,
            "status": status,
            "attempts": attempts,
            "next_retry_at": next_retry_at,
            "last_error": error[:2000],
            "claimed_at": claimed_at or now,
        },
    )
    return {"status": status, "attempts": attempts, "next_retry_at": next_retry_at, "updated": bool(res.rowcount)}


def _default_push() -> PushFn:
    access_token = config.LINE_CHANNEL_ACCESS_TOKEN
    if not access_token:
        raise RuntimeError("line_access_token_not_configured")
    return partial(push_line_text, access_token)


def _clamp_limit(limit: int | None) -> int:
    if limit is None:
        limit = config.LINE_DISPATCH_LIMIT
    return max(1, min(int(limit), 200))


def dispatch_line_notifications(
    limit: int | None = None,
    *,
    push: PushFn | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Claim due notifications and try to deliver each one.

    Claiming commits before any delivery so other dispatchers skip these rows.
    Each outcome is then committed on its own, so every claimed row ends as
    sent or failed regardless of how its neighbours fared.
    """
    push = push or _default_push()
    now = now or _now_utc()
    batch_limit = _clamp_limit(limit)

    with SessionLocal() as db:
        claimed = claim_due_notifications(db, batch_limit, now)
        db.commit()

    processed: list[dict[str, Any]] = []
    for n in claimed:
        notification_id = int(n["id"])
        recipient = str(n.get("line_user_id") or "").strip()
        try:
            if not recipient:
                raise ValueError("line_user_id_missing")
            push(recipient, str(n["message_text"]))
        except Exception as exc:
            attempts = int(n.get("attempts") or 0) + 1
            with SessionLocal() as db:
                outcome = mark_notification_failed(db, notification_id, attempts, str(exc) or exc.__class__.__name__, now)
                db.commit()
            logger.warning("[LINE] push failed id=%s attempts=%s error=%s", notification_id, attempts, exc)
            processed.append({"id": notification_id, **outcome})
            continue

        with SessionLocal() as db:
            updated = mark_notification_sent(db, notification_id, now)
            db.commit()
        if not updated:
            logger.warning("[LINE] sent outcome not recorded id=%s, row was reclaimed", notification_id)
        processed.append({"id": notification_id, "status": "sent", "attempts": int(n.get("attempts") or 0)})

    sent = sum(1 for p in processed if p["status"] == "sent")
    failed = len(processed) - sent
    logger.info("[LINE] dispatch picked=%s sent=%s failed=%s", len(claimed), sent, failed)
    return {"ok": True, "picked": len(claimed), "sent": sent, "failed": failed, "processed": processed}
