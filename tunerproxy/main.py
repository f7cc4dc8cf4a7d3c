"""
FastAPI application — HDHomeRun-style discovery, lineup and channel streams.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse, StreamingResponse
from pydantic import BaseModel
from starlette.background import BackgroundTask

from .config import settings
from .errors import GatewayError
from .gateway import Gateway

logger = logging.getLogger(__name__)

# Polled constantly by Plex; not worth a log line each
QUIET_PATHS = {"/discover.json", "/lineup_status.json"}


# ── Lifespan ────────────────────────────────────────────────────────
@asynccontextmanager
async def lifespan(app: FastAPI):
    gateway = getattr(app.state, "gateway", None)
    if gateway is None:
        gateway = await Gateway.create(settings)
        app.state.gateway = gateway
    await gateway.start()
    logger.info(
        "%s ready at %s with %d tuner(s) and %d channel(s)",
        gateway.settings.name,
        gateway.settings.server_url,
        gateway.admission.capacity,
        len(gateway.directory),
    )
    yield
    await gateway.stop()


app = FastAPI(title="tunerproxy", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    if request.url.path not in QUIET_PATHS:
        client = request.client.host if request.client else "-"
        logger.debug("Req %s %s", client, request.url.path)
    return await call_next(request)


@app.exception_handler(GatewayError)
async def gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=exc.status_code, content={"detail": str(exc)})


def get_gateway(request: Request) -> Gateway:
    return request.app.state.gateway


# ── API models ──────────────────────────────────────────────────────
class LineupEntry(BaseModel):
    GuideNumber: str
    GuideName: str
    URL: str


class RefreshResponse(BaseModel):
    detail: str
    channels: int


# ── Device emulation ────────────────────────────────────────────────
@app.get("/discover.json")
async def discover(request: Request) -> dict:
    return get_gateway(request).discover()


@app.get("/lineup.json", response_model=list[LineupEntry])
async def lineup(request: Request) -> list[dict]:
    return get_gateway(request).lineup()


@app.get("/lineup_status.json")
async def lineup_status() -> dict:
    return {
        "ScanInProgress": 0,
        "ScanPossible": 1,
        "Source": "Antenna",
        "SourceList": ["Antenna"],
    }


@app.get("/channel/{channel_id}")
async def channel(channel_id: str, request: Request):
    session = await get_gateway(request).open_stream(channel_id)
    return StreamingResponse(
        session.iter_bytes(),
        media_type="video/mp2t",
        background=BackgroundTask(session.response_finished),
    )


@app.get("/guide.xml")
async def guide_xml(request: Request):
    gateway = get_gateway(request)
    path = gateway.settings.guide_file
    if not gateway.settings.create_xml or not path.exists():
        raise HTTPException(status_code=404, detail="Guide not available")
    return FileResponse(path, media_type="application/xml")


@app.get("/favicon.ico")
async def favicon() -> Response:
    return Response(content=b"")


# ── Admin API ───────────────────────────────────────────────────────
@app.get("/api/status")
async def status(request: Request) -> dict:
    return get_gateway(request).status()


@app.post("/api/lineup/refresh")
async def refresh_lineup(request: Request) -> RefreshResponse:
    gateway = get_gateway(request)
    await gateway.force_refresh()
    return RefreshResponse(detail="Lineup refresh finished", channels=len(gateway.directory))
