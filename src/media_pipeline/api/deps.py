from __future__ import annotations

import secrets
from collections.abc import Mapping
from dataclasses import dataclass

from fastapi import HTTPException, Request, status

from media_pipeline.config import get_settings
from media_pipeline.utils.log import set_user_id


@dataclass(frozen=True, slots=True)
class Identity:
    kind: str  # anonymous|token
    user_id: str | None = None


def _expected_token() -> str:
    tok = get_settings().api_token
    if tok is None:
        return ""
    return tok.get_secret_value().strip()


def _presented_token(headers: Mapping[str, str], query: Mapping[str, str] | None) -> str:
    auth = (headers.get("authorization") or "").strip()
    if auth.lower().startswith("bearer "):
        return auth.split(" ", 1)[1].strip()
    key = (headers.get("x-api-key") or "").strip()
    if key:
        return key
    if query is not None:
        # Browsers cannot set headers on WebSocket/EventSource handshakes.
        return str(query.get("token") or "").strip()
    return ""


def identify(
    headers: Mapping[str, str], query: Mapping[str, str] | None = None
) -> Identity | None:
    """
    Resolve the caller. Authentication proper lives upstream; this only checks the
    optional shared API token and carries the `X-User-Id` asserted by the gateway.
    Returns None when a token is configured and the caller did not present it.
    """
    user_id = (headers.get("x-user-id") or "").strip() or None
    expected = _expected_token()
    if not expected:
        return Identity(kind="anonymous", user_id=user_id)
    presented = _presented_token(headers, query)
    if presented and secrets.compare_digest(presented, expected):
        return Identity(kind="token", user_id=user_id)
    return None


async def require_identity(request: Request) -> Identity:
    ident = identify(request.headers, request.query_params)
    if ident is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    set_user_id(ident.user_id)
    return ident
