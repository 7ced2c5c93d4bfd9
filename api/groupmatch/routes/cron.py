import logging

from fastapi import APIRouter, Body, Depends, HTTPException, Query
from fastapi.encoders import jsonable_encoder

from ..deps import require_cron_secret
from ..schemas import DailyMatchingRequest, DailyMatchingResponse, DispatchResponse, ManualMatchingRequest, SlotResult
from ..services import notifications, orchestrator

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(require_cron_secret)])


@router.post("/matching", response_model=DailyMatchingResponse)
def cron_daily_matching(payload: DailyMatchingRequest | None = Body(default=None)):
    payload = payload or DailyMatchingRequest()
    logger.info("[CRON] daily matching target_date=%s dispatch=%s", payload.target_date, payload.dispatch)
    return jsonable_encoder(orchestrator.run_daily_matching(payload.target_date, dispatch=payload.dispatch))


@router.post("/matching/manual", response_model=SlotResult)
def cron_manual_matching(payload: ManualMatchingRequest):
    logger.info("[CRON] manual matching slot_dt=%s", payload.slot_dt)
    return jsonable_encoder(orchestrator.run_matching_for_slot(payload.slot_dt, dispatch=payload.dispatch))


@router.post("/line/dispatch", response_model=DispatchResponse)
def cron_line_dispatch(limit: int = Query(default=50, ge=1, le=200)):
    try:
        result = notifications.dispatch_line_notifications(limit)
    except RuntimeError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return jsonable_encoder(result)
