from __future__ import annotations

import httpx

from .. import config


class LinePushError(Exception):
    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def build_push_payload(to: str, message_text: str) -> dict:
    return {"to": to, "messages": [{"type": "text", "text": message_text}]}


def push_line_text(
    access_token: str,
    to: str,
    message_text: str,
    *,
    client: httpx.Client | None = None,
    timeout: float | None = None,
) -> None:
    """POST one text message to the LINE push API.

    Raises LinePushError on a non-2xx response; transport errors and timeouts
    propagate as httpx exceptions.
    """
    headers = {"Authorization": f"Bearer {access_token}", "Content-Type": "application/json"}
    payload = build_push_payload(to, message_text)
    request_timeout = timeout if timeout is not None else config.LINE_PUSH_TIMEOUT_SECONDS

    if client is None:
        with httpx.Client(timeout=request_timeout) as owned:
            response = owned.post(config.LINE_PUSH_URL, json=payload, headers=headers)
    else:
        response = client.post(config.LINE_PUSH_URL, json=payload, headers=headers, timeout=request_timeout)

    if response.is_success:
        return
    body = response.text[:2000]
    raise LinePushError(f"line_push_failed:{response.status_code}:{body}", status_code=response.status_code)
