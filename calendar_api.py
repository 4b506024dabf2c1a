"""FastAPI application serving twilight phase calendar feeds."""

from __future__ import annotations

import json
import logging
import time
from contextlib import asynccontextmanager
from typing import Annotated, List, Optional, Tuple

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response

from models import ErrorResponse, FeedEventModel, FeedQueryParams, FeedResponse, HealthResponse
from twilight.access import AccessGate, InvalidAuthentication
from twilight.astro import EphemerisError, SpiceEphemerisProvider, load_ephemeris, loaded_files
from twilight.config import Settings
from twilight.ephemeris import EphemerisAcquisitionError, resolve_ephemeris_source
from twilight.feed import FeedAborted, FeedAssembler, FeedEvent, FeedRequest, InvalidSelection
from twilight.ical import render_calendar

logging.basicConfig(level=logging.INFO, format="%(message)s")
LOGGER = logging.getLogger("twilight-calendar")

APP_DESCRIPTION = (
    "Calendar feeds of night, twilight and daylight phases with yearly statistics"
)

CALENDAR_FILENAME = "sunrise-sunset-calendar.ics"

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
}


@asynccontextmanager
async def lifespan(app: FastAPI):  # pragma: no cover - exercised in integration tests
    settings = Settings.from_env()
    try:
        source_path = resolve_ephemeris_source()
    except EphemerisAcquisitionError as exc:
        LOGGER.error(json.dumps({"event": "ephemeris_acquire_failed", "error": str(exc)}))
        raise
    LOGGER.info(
        json.dumps(
            {
                "event": "startup",
                "ephemeris_source": str(source_path),
                "window_days": settings.window_days,
                "update_interval": settings.update_interval,
                "token_configured": settings.token_configured,
            }
        )
    )
    try:
        load_ephemeris(str(source_path))
    except EphemerisError as exc:
        LOGGER.error(json.dumps({"event": "ephemeris_load_failed", "error": str(exc)}))
        raise
    app.state.settings = settings
    app.state.assembler = FeedAssembler(SpiceEphemerisProvider(), settings)
    yield


app = FastAPI(
    title="Twilight Calendar API",
    description=APP_DESCRIPTION,
    version="1.0.0",
    lifespan=lifespan,
)


@app.middleware("http")
async def security_headers(request: Request, call_next):
    response = await call_next(request)
    for name, value in SECURITY_HEADERS.items():
        response.headers.setdefault(name, value)
    return response


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_assembler(request: Request) -> FeedAssembler:
    return request.app.state.assembler


def _error_response(status_code: int, code: str, message: str) -> JSONResponse:
    payload = ErrorResponse(code=code, error=message)
    LOGGER.error(json.dumps({"event": "error", "code": code, "message": message}))
    return JSONResponse(status_code=status_code, content=payload.model_dump())


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    messages = ", ".join(error["msg"] for error in exc.errors())
    return _error_response(422, "validation_error", messages)


@app.exception_handler(InvalidAuthentication)
async def authentication_exception_handler(
    request: Request, exc: InvalidAuthentication
) -> JSONResponse:
    return _error_response(401, "invalid_authentication", str(exc))


@app.exception_handler(InvalidSelection)
async def selection_exception_handler(
    request: Request, exc: InvalidSelection
) -> JSONResponse:
    return _error_response(400, "invalid_selection", str(exc))


@app.exception_handler(FeedAborted)
async def aborted_exception_handler(request: Request, exc: FeedAborted) -> JSONResponse:
    return _error_response(503, "feed_aborted", str(exc))


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    detail = exc.detail
    if isinstance(detail, dict):
        message = detail.get("error") or detail.get("message") or str(detail)
    elif isinstance(detail, list):
        message = ", ".join(str(item) for item in detail)
    else:
        message = str(detail)
    return _error_response(exc.status_code, f"http_{exc.status_code}", message)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    LOGGER.exception("Unhandled exception", exc_info=exc)
    return _error_response(500, "internal_error", "Unhandled server error")


def _provided_token(params: FeedQueryParams, authorization: Optional[str]) -> Optional[str]:
    if params.token:
        return params.token
    if authorization and authorization.startswith("Bearer "):
        return authorization[len("Bearer "):].strip()
    return None


def _build_feed(
    params: FeedQueryParams,
    authorization: Optional[str],
    settings: Settings,
    assembler: FeedAssembler,
    output: str,
) -> Tuple[FeedRequest, List[FeedEvent]]:
    AccessGate(settings).check(_provided_token(params, authorization))
    start_time = time.perf_counter()
    feed_request = params.to_feed_request()
    events = assembler.assemble(feed_request)
    LOGGER.info(
        json.dumps(
            {
                "event": "feed",
                "format": output,
                "lat": feed_request.coordinate.latitude,
                "lon": feed_request.coordinate.longitude,
                "zone": feed_request.timezone,
                "start": feed_request.start_date.isoformat(),
                "kinds": sorted(kind.value for kind in feed_request.kinds),
                "events": len(events),
                "duration_ms": round((time.perf_counter() - start_time) * 1000.0, 3),
            }
        )
    )
    return feed_request, events


@app.get("/health", response_model=HealthResponse)
def health(settings: Settings = Depends(get_settings)) -> HealthResponse:
    files = loaded_files()
    return HealthResponse(
        ok=True,
        ephemeris_loaded=bool(files),
        files=files,
        token_configured=settings.token_configured,
    )


@app.get(
    "/feed.ics",
    response_class=Response,
    responses={
        200: {"content": {"text/calendar": {}}},
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
)
def feed_ics(
    params: Annotated[FeedQueryParams, Query()],
    authorization: Annotated[Optional[str], Header()] = None,
    settings: Settings = Depends(get_settings),
    assembler: FeedAssembler = Depends(get_assembler),
) -> Response:
    feed_request, events = _build_feed(params, authorization, settings, assembler, "ics")
    return Response(
        content=render_calendar(events, feed_request, settings),
        media_type="text/calendar; charset=utf-8",
        headers={
            "Content-Disposition": f'attachment; filename="{CALENDAR_FILENAME}"',
            "Cache-Control": f"max-age={settings.update_interval}",
        },
    )


@app.get(
    "/feed.json",
    response_model=FeedResponse,
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
)
def feed_json(
    params: Annotated[FeedQueryParams, Query()],
    authorization: Annotated[Optional[str], Header()] = None,
    settings: Settings = Depends(get_settings),
    assembler: FeedAssembler = Depends(get_assembler),
) -> FeedResponse:
    feed_request, events = _build_feed(params, authorization, settings, assembler, "json")
    return FeedResponse(
        latitude=feed_request.coordinate.latitude,
        longitude=feed_request.coordinate.longitude,
        timezone=feed_request.timezone,
        start_date=feed_request.start_date,
        end_date=assembler.last_day(feed_request),
        count=len(events),
        events=[FeedEventModel.from_event(event) for event in events],
    )
