"""
FastAPI application exposing the sync engine over HTTP.

Endpoints:
    GET  /health               Liveness plus online/initialized flags
    POST /webhooks/monday      monday.com webhook receiver (challenge + events)
    GET  /api/v1/sync/status   Telemetry, queue stats and connectivity
    POST /api/v1/sync          Trigger a sync cycle

The /api/v1 endpoints require an X-API-Key header matching TASKSYNC_API_KEY
when that variable is set; without it they run unauthenticated (development
mode). The webhook endpoint authenticates through its own signature check.

Usage:
    app = create_app(engine)
    uvicorn.run(app, host="127.0.0.1", port=8421)
"""

from contextlib import asynccontextmanager
from typing import Optional, Dict, Any
import json
import logging
import os

from fastapi import FastAPI, HTTPException, Header, Depends, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .errors import TaskSyncError, ValidationError
from .sync.engine import SyncEngine

logger = logging.getLogger(__name__)

API_KEY_ENV = "TASKSYNC_API_KEY"


async def verify_api_key(x_api_key: Optional[str] = Header(None, alias="X-API-Key")) -> None:
    """
    Check the X-API-Key header against TASKSYNC_API_KEY.

    Raises:
        HTTPException: 401 Unauthorized if a key is configured and the header
            is missing or wrong
    """
    expected_key = os.environ.get(API_KEY_ENV)
    if expected_key is None:
        return

    if x_api_key is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing API key. Provide X-API-Key header.",
            headers={"WWW-Authenticate": "ApiKey"},
        )
    if x_api_key != expected_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
            headers={"WWW-Authenticate": "ApiKey"},
        )


class SyncRequest(BaseModel):
    """Request body for triggering a sync cycle."""
    direction: str = Field(default="bidirectional", description="bidirectional|push|pull")
    force_full_sync: bool = Field(default=False, description="Re-record every remote task")


def create_app(engine: SyncEngine, manage_lifecycle: bool = True) -> FastAPI:
    """
    Build the FastAPI app around an engine.

    Args:
        engine: The sync engine to expose
        manage_lifecycle: Initialize the engine on startup and shut it down on exit
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if manage_lifecycle:
            await engine.initialize()
        try:
            yield
        finally:
            if manage_lifecycle:
                await engine.shutdown()

    app = FastAPI(
        title="tasksync",
        description="Local task store <-> monday.com synchronization service",
        lifespan=lifespan,
    )
    app.state.engine = engine

    @app.get("/health", tags=["General"], summary="Health check endpoint")
    async def health() -> Dict[str, Any]:
        return {
            "status": "healthy",
            "online": engine.is_online,
            "initialized": engine.initialized,
            "syncing": engine.is_syncing,
        }

    @app.post("/webhooks/monday", tags=["Webhooks"], summary="monday.com webhook receiver")
    async def monday_webhook(request: Request) -> JSONResponse:
        raw_body = await request.body()
        try:
            body = json.loads(raw_body) if raw_body else None
        except ValueError:
            logger.warning("Webhook body is not valid JSON")
            body = None

        handler = engine.get_webhook_handler()
        code, payload = await handler.handle_webhook(
            body,
            authorization=request.headers.get("Authorization"),
            raw_body=raw_body,
        )
        return JSONResponse(content=payload, status_code=code)

    @app.get(
        "/api/v1/sync/status",
        tags=["Sync"],
        summary="Sync telemetry and state",
        dependencies=[Depends(verify_api_key)],
    )
    async def sync_status() -> Dict[str, Any]:
        return engine.get_telemetry()

    @app.post(
        "/api/v1/sync",
        tags=["Sync"],
        summary="Trigger a sync cycle",
        dependencies=[Depends(verify_api_key)],
    )
    async def trigger_sync(request: SyncRequest) -> JSONResponse:
        try:
            result = await engine.sync_with_monday(
                force_full_sync=request.force_full_sync,
                direction=request.direction,
            )
        except ValidationError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
        except TaskSyncError as e:
            raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))

        if result.get("status") == "already_syncing":
            return JSONResponse(content=result, status_code=status.HTTP_409_CONFLICT)
        return JSONResponse(content=result)

    return app


__all__ = ["create_app", "SyncRequest", "verify_api_key"]
