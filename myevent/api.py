"""FastAPI application exposing subscriptions and reminder operations."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from importlib.metadata import PackageNotFoundError, version as pkg_version

from fastapi import Depends, FastAPI, HTTPException, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.exc import OperationalError
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import settings
from .errors import CapacityExceeded, EventAlreadyStarted, MyEventError, NotFound
from .models import Participant
from .notifications import NotificationKind
from .services import Services, build_services
from .storage import init_db

# Use uvicorn's error logger so messages get the level prefix in the default log
# format.
logger = logging.getLogger("uvicorn.error")

ERROR_STATUS = {
    NotFound: 404,
    CapacityExceeded: 409,
    EventAlreadyStarted: 409,
}


def _load_app_version() -> str:
    try:
        return pkg_version("myevent")
    except PackageNotFoundError:
        return "dev"


APP_VERSION = _load_app_version()


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    services = build_services(settings)
    app.state.services = services
    if settings.enable_scheduler:
        services.scheduler.start()
    try:
        yield
    finally:
        services.shutdown()


app = FastAPI(title="MyEvent", version=APP_VERSION, lifespan=lifespan)


def get_services(request: Request) -> Services:
    return request.app.state.services


class SubscribeRequest(BaseModel):
    email: str = Field(..., min_length=1, max_length=255)
    name: str | None = Field(None, max_length=120)


class SendTestEmailRequest(BaseModel):
    to: str = Field(..., min_length=1, max_length=255)
    kind: NotificationKind


def _participant_payload(participant: Participant) -> dict:
    return {
        "id": participant.id,
        "event_id": participant.event_id,
        "email": participant.email,
        "name": participant.name,
        "notified": participant.notified,
        "created_at": participant.created_at.isoformat() if participant.created_at else None,
    }


@app.exception_handler(MyEventError)
async def domain_error_handler(request: Request, exc: MyEventError):
    status = ERROR_STATUS.get(type(exc), 400)
    return JSONResponse(exc.as_dict(), status_code=status)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse({"detail": exc.detail}, status_code=exc.status_code)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse({"detail": exc.errors()}, status_code=422)


@app.exception_handler(OperationalError)
async def operational_error_handler(request: Request, exc: OperationalError):
    raw = str(exc.orig) if getattr(exc, "orig", None) else str(exc)
    if "database is locked" in raw.lower():
        logger.error(
            "SQLite database is locked while handling %s %s",
            request.method,
            request.url.path,
        )
        return JSONResponse(
            {"detail": "The database is busy at the moment. Please try again."},
            status_code=503,
        )
    logger.error(
        "Operational database error on %s %s: %s",
        request.method,
        request.url.path,
        raw,
    )
    return JSONResponse({"detail": "We hit a database issue. Please try again."}, status_code=500)


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    """Gracefully handle unexpected errors."""
    logger.exception(
        "Unhandled error while processing %s %s", request.method, request.url.path
    )
    return JSONResponse({"detail": "Internal server error"}, status_code=500)


@app.get("/healthz")
def healthz():
    return {"status": "ok", "version": APP_VERSION}


@app.post("/api/events/{event_id}/subscribe")
def subscribe(
    event_id: str,
    payload: SubscribeRequest,
    services: Services = Depends(get_services),
):
    try:
        participant = services.subscriptions.subscribe(
            event_id, payload.email, payload.name
        )
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return _participant_payload(participant)


@app.delete("/api/events/{event_id}/subscribe", status_code=204)
def unsubscribe(
    event_id: str,
    email: str = Query(..., min_length=1),
    services: Services = Depends(get_services),
):
    if not services.subscriptions.unsubscribe(event_id, email):
        raise NotFound("No subscription found for this email.")
    return Response(status_code=204)


@app.get("/api/events/{event_id}/participants")
def participants(event_id: str, services: Services = Depends(get_services)):
    return [
        _participant_payload(participant)
        for participant in services.subscriptions.list_participants(event_id)
    ]


@app.get("/api/reminders/status")
def reminders_status(services: Services = Depends(get_services)):
    return services.scheduler.status().as_dict()


@app.post("/api/reminders/start")
def reminders_start(services: Services = Depends(get_services)):
    services.scheduler.start()
    return {
        "started": True,
        "schedule": services.scheduler.schedule_description,
    }


@app.post("/api/reminders/stop")
def reminders_stop(services: Services = Depends(get_services)):
    services.scheduler.stop()
    return {"stopped": True}


@app.post("/api/reminders/run")
def reminders_run(services: Services = Depends(get_services)):
    result = services.scheduler.run_manual_pass()
    return JSONResponse(result.as_dict(), status_code=200 if result.success else 500)


@app.post("/api/reminders/events/{event_id}")
def reminders_for_event(event_id: str, services: Services = Depends(get_services)):
    result = services.scheduler.run_for_event(event_id)
    return JSONResponse(result.as_dict(), status_code=200 if result.success else 400)


@app.post("/api/email/test-connection")
def email_test_connection(services: Services = Depends(get_services)):
    if not services.dispatcher.check_connection():
        raise HTTPException(status_code=500, detail="Email connection check failed")
    return {"connected": True}


@app.post("/api/email/send-test")
def email_send_test(
    payload: SendTestEmailRequest, services: Services = Depends(get_services)
):
    if not services.dispatcher.send_test(payload.kind, payload.to):
        raise HTTPException(
            status_code=500, detail=f"Failed to send {payload.kind.value} test email"
        )
    return {"sent": True, "kind": payload.kind.value, "to": payload.to}
