"""Middleware: API key authentication and caller identification."""

from __future__ import annotations

import secrets
from typing import TYPE_CHECKING, Annotated

from fastapi import Depends, Form, Header, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from vegrecog.core.recognizer import ANONYMOUS

if TYPE_CHECKING:
    from vegrecog.config import Settings

_bearer_scheme = HTTPBearer(auto_error=False)


def _get_settings_from_request(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


async def verify_api_key(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(_bearer_scheme)],
) -> None:
    """Check the Bearer token against the configured API key.

    If no API key is configured (VEGRECOG_API_KEY not set), all requests pass.
    If configured, requests must include 'Authorization: Bearer <key>'.
    """
    settings = _get_settings_from_request(request)
    if settings.api_key is None:
        return

    if credentials is None or not secrets.compare_digest(credentials.credentials.encode(), settings.api_key.encode()):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key",
            headers={"WWW-Authenticate": "Bearer"},
        )


async def caller_id(
    form_caller_id: Annotated[str | None, Form(alias="caller_id")] = None,
    header_caller_id: Annotated[str | None, Header(alias="X-Caller-Id")] = None,
) -> str:
    """Opaque caller identifier: form field, then header, then anonymous."""
    return form_caller_id or header_caller_id or ANONYMOUS
