"""FastAPI application hosting the relay."""

from __future__ import annotations

import hmac
import logging
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import APIRouter, FastAPI, Header, HTTPException, Request, WebSocket
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel, Field

from panelsync import __version__
from panelsync.config import Settings, get_settings
from panelsync.protocol.messages import PanelCreateData, PanelCreateMessage

from .router import Relay

logger = logging.getLogger(__name__)

router = APIRouter()


class PanelCreateRequest(BaseModel):
    """Body of ``POST /api/panels``."""

    title: str | None = Field(None, max_length=200)
    code: str | None = None
    position: dict[str, float] | None = None
    size: dict[str, float] | None = None


def get_relay(request: Request) -> Relay:
    return request.app.state.relay


def verify_api_key(request: Request, x_api_key: str | None) -> None:
    """Check ``X-API-Key`` when a key is configured. Open in dev mode."""
    expected = request.app.state.settings.api_key
    if not expected:
        return
    if not x_api_key or not hmac.compare_digest(x_api_key, expected):
        client_ip = request.client.host if request.client else "?"
        logger.warning(f"Rejected API request from {client_ip}", extra={"client_ip": client_ip})
        raise HTTPException(status_code=401, detail="Invalid or missing API key")


@router.get("/health")
def health_check() -> dict:
    """Liveness probe."""
    return {"status": "ok", "timestamp": datetime.now().isoformat()}


@router.get("/ws/stats")
def websocket_stats(request: Request) -> dict:
    """Connection and routing counters."""
    return get_relay(request).get_stats()


@router.post("/api/panels")
async def create_panel(
    body: PanelCreateRequest,
    request: Request,
    x_api_key: str | None = Header(None),
) -> dict:
    """Ask the primary to create a panel."""
    verify_api_key(request, x_api_key)

    command = PanelCreateMessage(
        data=PanelCreateData(
            title=body.title,
            code=body.code or "",
            position=body.position,
            size=body.size,
        )
    )
    forwarded = await get_relay(request).forward_command(command)
    return {"success": forwarded > 0, "forwarded": forwarded}


def create_app(settings: Settings | None = None, relay: Relay | None = None) -> FastAPI:
    """Build the relay application.

    Args:
        settings: Settings to use. Defaults to the cached global settings.
        relay: Relay instance. A fresh one is created when omitted.
    """
    settings = settings or get_settings()
    relay = relay or Relay()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"Relay listening on ws://{settings.host}:{settings.port}{settings.ws_path}")
        yield
        logger.info(f"Relay shutting down with {relay.registry.connection_count} open connections")

    app = FastAPI(title="panelsync relay", version=__version__, lifespan=lifespan)
    app.state.settings = settings
    app.state.relay = relay
    app.include_router(router)

    @app.websocket(settings.ws_path)
    async def websocket_endpoint(websocket: WebSocket):
        """Relay endpoint for primary and remote clients."""
        await relay.handle_connection(websocket)

    if settings.static_dir is not None:
        if settings.static_dir.is_dir():
            app.mount("/", StaticFiles(directory=settings.static_dir, html=True), name="static")
        else:
            logger.warning(f"Static directory {settings.static_dir} not found, not serving files")

    return app
