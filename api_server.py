from __future__ import annotations

import hmac
import logging
from datetime import date
from functools import lru_cache
from typing import Literal, Optional

from fastapi import Depends, FastAPI, Header, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError

from config import get_settings
from db.session import SessionLocal, validate_db_compatibility
from scheduling.engine import BookingScheduler
from scheduling.schema import (
    Actor,
    AvailabilityResult,
    BookingListResponse,
    BookingRequest,
    BookingStatus,
    ErrorKind,
    FacilityListResponse,
    FacilityStatus,
    FacilityStatusUpdateRequest,
    FacilityType,
    FacilityUpsertRequest,
    ReviewRequest,
)

settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

APP_NAME = settings.app_name
APP_VERSION = settings.app_version
API_KEY_HEADER = "X-API-Key"
ACTOR_ID_HEADER = "X-Actor-Id"
ACTOR_ROLE_HEADER = "X-Actor-Role"

ERROR_STATUS_CODES = {
    ErrorKind.VALIDATION_ERROR: 400,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.SLOT_CONFLICT: 409,
    ErrorKind.INVALID_TRANSITION: 409,
    ErrorKind.FACILITY_INACTIVE: 409,
    ErrorKind.FACILITY_IN_USE: 409,
}


@lru_cache
def get_scheduler() -> BookingScheduler:
    return BookingScheduler(SessionLocal, campus_timezone=settings.campus_timezone)


def verify_api_key(x_api_key: Optional[str] = Header(default=None, alias=API_KEY_HEADER)):
    if not x_api_key or not hmac.compare_digest(x_api_key, settings.booking_api_key):
        raise HTTPException(status_code=401, detail="Invalid or missing API key.")


def get_actor(
    x_actor_id: Optional[str] = Header(default=None, alias=ACTOR_ID_HEADER),
    x_actor_role: Optional[str] = Header(default=None, alias=ACTOR_ROLE_HEADER),
) -> Actor:
    if not x_actor_id:
        raise HTTPException(status_code=401, detail=f"Missing {ACTOR_ID_HEADER} header.")
    try:
        return Actor(id=x_actor_id, role=(x_actor_role or "USER").strip().upper())
    except ValidationError as exc:
        raise HTTPException(status_code=401, detail=f"Invalid actor identity: {exc.errors()[0]['msg']}") from exc


def _respond(result, success_status: int = 200) -> JSONResponse:
    if result.success:
        status_code = success_status
    else:
        status_code = ERROR_STATUS_CODES.get(result.error, 500)
    return JSONResponse(status_code=status_code, content=result.model_dump(mode="json"))


class HealthResponse(BaseModel):
    status: Literal["ok", "error"]
    service: str
    version: str


app = FastAPI(title=APP_NAME, version=APP_VERSION)


@app.on_event("startup")
def startup_checks():
    logger.info("Starting %s %s (campus time zone %s)", APP_NAME, APP_VERSION, settings.campus_timezone)
    validate_db_compatibility()


@app.get("/health/live", response_model=HealthResponse)
def health_live():
    return HealthResponse(status="ok", service=APP_NAME, version=APP_VERSION)


@app.get("/health/ready", response_model=HealthResponse)
def health_ready():
    try:
        validate_db_compatibility()
    except Exception as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return HealthResponse(status="ok", service=APP_NAME, version=APP_VERSION)


@app.get("/v1/facilities", response_model=FacilityListResponse, dependencies=[Depends(verify_api_key)])
def list_facilities(
    type: Optional[FacilityType] = None,
    status: Optional[FacilityStatus] = None,
    min_capacity: Optional[int] = None,
    search: Optional[str] = None,
    location: Optional[str] = None,
    scheduler: BookingScheduler = Depends(get_scheduler),
):
    return scheduler.list_facilities(
        facility_type=type,
        status=status,
        min_capacity=min_capacity,
        search=search,
        location=location,
    )


@app.get("/v1/facilities/{facility_id}", dependencies=[Depends(verify_api_key)])
def get_facility(facility_id: str, scheduler: BookingScheduler = Depends(get_scheduler)):
    return _respond(scheduler.get_facility(facility_id))


@app.get(
    "/v1/facilities/{facility_id}/availability",
    response_model=AvailabilityResult,
    dependencies=[Depends(verify_api_key)],
)
def get_facility_availability(facility_id: str, day: date, scheduler: BookingScheduler = Depends(get_scheduler)):
    return _respond(scheduler.facility_availability(facility_id, day))


@app.post("/v1/admin/facilities", dependencies=[Depends(verify_api_key)])
def admin_upsert_facility(
    request: FacilityUpsertRequest,
    actor: Actor = Depends(get_actor),
    scheduler: BookingScheduler = Depends(get_scheduler),
):
    return _respond(scheduler.upsert_facility(request, actor))


@app.patch("/v1/admin/facilities/{facility_id}/status", dependencies=[Depends(verify_api_key)])
def admin_set_facility_status(
    facility_id: str,
    request: FacilityStatusUpdateRequest,
    actor: Actor = Depends(get_actor),
    scheduler: BookingScheduler = Depends(get_scheduler),
):
    return _respond(scheduler.set_facility_status(facility_id, request.status, actor))


@app.delete("/v1/admin/facilities/{facility_id}", dependencies=[Depends(verify_api_key)])
def admin_delete_facility(
    facility_id: str,
    actor: Actor = Depends(get_actor),
    scheduler: BookingScheduler = Depends(get_scheduler),
):
    return _respond(scheduler.delete_facility(facility_id, actor))


@app.post("/v1/bookings", dependencies=[Depends(verify_api_key)])
def create_booking(
    request: BookingRequest,
    actor: Actor = Depends(get_actor),
    scheduler: BookingScheduler = Depends(get_scheduler),
):
    return _respond(scheduler.submit_booking(request, actor), success_status=201)


@app.get("/v1/bookings", response_model=BookingListResponse, dependencies=[Depends(verify_api_key)])
def list_bookings(
    status: Optional[BookingStatus] = None,
    facility_id: Optional[str] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    actor: Actor = Depends(get_actor),
    scheduler: BookingScheduler = Depends(get_scheduler),
):
    return scheduler.list_bookings(actor, status=status, facility_id=facility_id, date_from=date_from, date_to=date_to)


@app.get("/v1/bookings/my", response_model=BookingListResponse, dependencies=[Depends(verify_api_key)])
def my_bookings(
    status: Optional[BookingStatus] = None,
    actor: Actor = Depends(get_actor),
    scheduler: BookingScheduler = Depends(get_scheduler),
):
    return scheduler.list_bookings(actor, status=status, mine=True)


@app.get("/v1/bookings/{booking_id}", dependencies=[Depends(verify_api_key)])
def get_booking(
    booking_id: str,
    actor: Actor = Depends(get_actor),
    scheduler: BookingScheduler = Depends(get_scheduler),
):
    return _respond(scheduler.get_booking(booking_id, actor))


@app.post("/v1/bookings/{booking_id}/review", dependencies=[Depends(verify_api_key)])
def review_booking(
    booking_id: str,
    request: ReviewRequest,
    actor: Actor = Depends(get_actor),
    scheduler: BookingScheduler = Depends(get_scheduler),
):
    return _respond(scheduler.review_booking(booking_id, request.decision, actor, remarks=request.remarks))


@app.post("/v1/bookings/{booking_id}/cancel", dependencies=[Depends(verify_api_key)])
def cancel_booking(
    booking_id: str,
    actor: Actor = Depends(get_actor),
    scheduler: BookingScheduler = Depends(get_scheduler),
):
    return _respond(scheduler.cancel_booking(booking_id, actor))


@app.delete("/v1/bookings/{booking_id}", dependencies=[Depends(verify_api_key)])
def delete_booking(
    booking_id: str,
    actor: Actor = Depends(get_actor),
    scheduler: BookingScheduler = Depends(get_scheduler),
):
    return _respond(scheduler.delete_booking(booking_id, actor))
