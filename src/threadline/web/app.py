"""FastAPI application exposing the Threadline commands as a JSON API."""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from typing import Any

from fastapi import FastAPI, Request, status as http_status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from threadline.commands import ThreadlineCommands
from threadline.core import AppSettings, load_app_settings
from threadline.core.errors import (
    AuthError,
    ErrorResponse,
    NetworkError,
    NotFoundError,
    ParseError,
    ThreadlineError,
    ValidationError,
)
from threadline.core.models import OAuthTokens, SyncProgress

LOGGER = logging.getLogger(__name__)

RATE_LIMIT_MAX_CALLS = 2
RATE_LIMIT_WINDOW_SECONDS = 60

_STATUS_BY_ERROR: tuple[tuple[type[ThreadlineError], int], ...] = (
    (NotFoundError, http_status.HTTP_404_NOT_FOUND),
    (ValidationError, http_status.HTTP_400_BAD_REQUEST),
    (AuthError, http_status.HTTP_401_UNAUTHORIZED),
    (ParseError, 422),
    (NetworkError, http_status.HTTP_502_BAD_GATEWAY),
)


class AddAccountRequest(BaseModel):
    email: str = Field(min_length=3)
    password: str = Field(min_length=1)


class AddOAuthAccountRequest(BaseModel):
    email: str = Field(min_length=3)
    provider: str
    access_token: str = Field(min_length=1)
    refresh_token: str | None = None
    expires_in: int | None = None


class SyncAccountRequest(BaseModel):
    password: str | None = None


def status_for(error: ThreadlineError) -> int:
    """HTTP status code used to report ``error``."""
    for error_type, code in _STATUS_BY_ERROR:
        if isinstance(error, error_type):
            return code
    return http_status.HTTP_500_INTERNAL_SERVER_ERROR


def create_app(
    settings: AppSettings | None = None,
    *,
    commands: ThreadlineCommands | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    app_settings = settings or load_app_settings()
    service = commands or ThreadlineCommands(app_settings)
    app = FastAPI(title="Threadline")

    latest_progress: dict[int, SyncProgress] = {}

    def record_progress(progress: SyncProgress) -> None:
        latest_progress[progress.account_id] = progress

    service.emitter.subscribe(record_progress)

    # Simple in-memory rate limiting for manual sync requests.
    sync_rate_lock = asyncio.Lock()
    sync_rate_history: deque[float] = deque()

    async def allow_sync() -> bool:
        async with sync_rate_lock:
            now = time.monotonic()
            while sync_rate_history and now - sync_rate_history[0] > RATE_LIMIT_WINDOW_SECONDS:
                sync_rate_history.popleft()
            if len(sync_rate_history) >= RATE_LIMIT_MAX_CALLS:
                return False
            sync_rate_history.append(now)
            return True

    def rate_limited() -> JSONResponse:
        payload = ErrorResponse(
            code="RATE_LIMITED",
            message="Too many sync requests. Please wait before trying again.",
        )
        return JSONResponse(
            status_code=http_status.HTTP_429_TOO_MANY_REQUESTS, content=payload.as_dict()
        )

    @app.exception_handler(ThreadlineError)
    async def handle_threadline_error(request: Request, exc: ThreadlineError) -> JSONResponse:
        LOGGER.warning("%s %s failed: [%s] %s", request.method, request.url.path, exc.code, exc)
        return JSONResponse(status_code=status_for(exc), content=exc.to_response().as_dict())

    @app.on_event("shutdown")
    async def shutdown_event() -> None:
        """Close connection pool on app shutdown."""
        service.close()
        LOGGER.info("Connection pool closed")

    # Providers and accounts ------------------------------------------------------
    @app.get("/api/providers")
    async def list_providers() -> list[dict[str, Any]]:
        return [
            {
                "name": provider.name,
                "display_name": provider.display_name,
                "host": provider.imap.host,
                "port": provider.imap.port,
                "use_tls": provider.imap.use_tls,
                "supports_oauth": provider.oauth_supported,
            }
            for provider in service.list_providers()
        ]

    @app.get("/api/accounts")
    async def list_accounts() -> list[dict[str, Any]]:
        return jsonable_encoder(await service.list_accounts())

    @app.post("/api/accounts", status_code=http_status.HTTP_201_CREATED)
    async def add_account(payload: AddAccountRequest) -> dict[str, int]:
        return {"id": await service.add_account(payload.email, payload.password)}

    @app.post("/api/accounts/oauth", status_code=http_status.HTTP_201_CREATED)
    async def add_oauth_account(payload: AddOAuthAccountRequest) -> dict[str, int]:
        tokens = OAuthTokens(
            access_token=payload.access_token,
            refresh_token=payload.refresh_token,
            expires_in=payload.expires_in,
        )
        return {"id": await service.add_oauth_account(payload.email, payload.provider, tokens)}

    @app.post("/api/accounts/{email}/sync", response_model=None)
    async def sync_account(
        email: str, payload: SyncAccountRequest | None = None
    ) -> dict[str, Any] | JSONResponse:
        if not await allow_sync():
            return rate_limited()
        password = payload.password if payload else None
        return jsonable_encoder(await service.sync_account(email, password))

    @app.post("/api/accounts/sync-all", response_model=None)
    async def sync_all_accounts() -> dict[str, Any] | JSONResponse:
        if not await allow_sync():
            return rate_limited()
        outcomes = await service.sync_all_accounts()
        return {
            email: (
                outcome.as_dict()
                if isinstance(outcome, ErrorResponse)
                else jsonable_encoder(outcome)
            )
            for email, outcome in outcomes.items()
        }

    @app.post("/api/accounts/{email}/reset")
    async def reset_account(email: str) -> dict[str, bool]:
        await service.reset_account_sync(email)
        return {"success": True}

    @app.get("/api/sync/status")
    async def sync_status() -> list[dict[str, Any]]:
        return jsonable_encoder(list(latest_progress.values()))

    # Projects ------------------------------------------------------------------
    @app.get("/api/projects")
    async def list_projects() -> list[dict[str, Any]]:
        return jsonable_encoder(await service.list_projects())

    @app.post("/api/projects/classify")
    async def classify_unassigned() -> dict[str, int]:
        return {"classified": await service.classify_unassigned()}

    @app.get("/api/projects/{project_id}")
    async def get_project(project_id: int) -> dict[str, Any]:
        return jsonable_encoder(await service.get_project(project_id))

    @app.get("/api/projects/{project_id}/timeline")
    async def project_timeline(project_id: int) -> list[dict[str, Any]]:
        return jsonable_encoder(await service.get_project_timeline(project_id))

    @app.post("/api/projects/{project_id}/pin")
    async def toggle_pin(project_id: int) -> dict[str, bool]:
        return {"pinned": await service.toggle_project_pin(project_id)}

    @app.post("/api/projects/{project_id}/archive")
    async def archive_project(project_id: int) -> dict[str, bool]:
        await service.archive_project(project_id)
        return {"success": True}

    @app.post("/api/projects/{project_id}/unarchive")
    async def unarchive_project(project_id: int) -> dict[str, bool]:
        await service.unarchive_project(project_id)
        return {"success": True}

    return app


__all__ = ["create_app", "status_for"]
