from fastapi import FastAPI

from .cron import router as cron_router
from .groups import router as groups_router


def include_modular_routers(app: FastAPI) -> None:
    app.include_router(cron_router, prefix="/cron", tags=["cron"])
    app.include_router(groups_router, tags=["groups"])

