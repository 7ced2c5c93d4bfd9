from fastapi import APIRouter, HTTPException
from fastapi.encoders import jsonable_encoder

from ..config import RL_GROUP_PAGE_LIMIT, RL_WINDOW_SECONDS
from ..database import SessionLocal
from ..schemas import GroupPageResponse
from ..services.group_page import GroupExpired, GroupNotFound, resolve_group_by_token
from ..services.rate_limit import rate_limit_dependency

router = APIRouter()

RL_GROUP_PAGE = rate_limit_dependency("group_page", RL_GROUP_PAGE_LIMIT, RL_WINDOW_SECONDS)


@router.get("/g/{token}", response_model=GroupPageResponse, dependencies=[RL_GROUP_PAGE])
def get_group_page(token: str):
    token = token.strip()
    if not token:
        raise HTTPException(status_code=400, detail="invalid_token")
    with SessionLocal() as db:
        try:
            page = resolve_group_by_token(db, token)
        except GroupNotFound:
            raise HTTPException(status_code=404, detail="not_found")
        except GroupExpired:
            raise HTTPException(status_code=410, detail="expired")
    return jsonable_encoder(page)
