from fastapi import Header, HTTPException

from . import config


def bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    scheme, _, value = authorization.strip().partition(" ")
    if scheme.lower() != "bearer" or not value.strip():
        return None
    return value.strip()


def validate_cron_secret(token: str | None, secret: str | None) -> None:
    if not secret or not token or token != secret:
        raise HTTPException(status_code=401, detail="unauthorized")


def require_cron_secret(authorization: str | None = Header(default=None)) -> None:
    validate_cron_secret(bearer_token(authorization), config.CRON_SECRET)
