from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.api.auth import get_current_user
from app.api.food_logs import invalidate_food_log_cache
from app.core.timezone import (
    COMMON_TIMEZONES,
    coerce_timezone,
    local_date_in,
    local_midnight_in,
    timezone_offset_hours,
)
from app.db.models import User
from app.db.session import get_db
from app.services.timezones import (
    TIMEZONE_LOOKUP_TIMEOUT_SECONDS,
    InvalidTimezoneError,
    resolve_user_timezone,
    update_user_timezone,
)

router = APIRouter(prefix="/settings", tags=["settings"])


class TimezoneUpdateRequest(BaseModel):
    timezone: str = Field(max_length=64)


class TimezoneStatusResponse(BaseModel):
    timezone: str
    today: str
    local_midnight: datetime
    utc_offset_hours: float


class TimezoneOption(BaseModel):
    value: str
    label: str


class TimezoneOptionsResponse(BaseModel):
    items: list[TimezoneOption]


def _status_for(timezone_name: str) -> TimezoneStatusResponse:
    return TimezoneStatusResponse(
        timezone=timezone_name,
        today=local_date_in(timezone_name),
        local_midnight=local_midnight_in(timezone_name),
        utc_offset_hours=timezone_offset_hours(timezone_name),
    )


@router.get("/timezone", response_model=TimezoneStatusResponse)
def get_timezone(user: User = Depends(get_current_user), db: Session = Depends(get_db)) -> TimezoneStatusResponse:
    timezone_name = resolve_user_timezone(db, user.id, timeout_seconds=TIMEZONE_LOOKUP_TIMEOUT_SECONDS)
    return _status_for(timezone_name)


@router.put("/timezone", response_model=TimezoneStatusResponse, status_code=status.HTTP_200_OK)
def put_timezone(
    payload: TimezoneUpdateRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> TimezoneStatusResponse:
    previous = resolve_user_timezone(db, user.id, timeout_seconds=TIMEZONE_LOOKUP_TIMEOUT_SECONDS)
    try:
        stored = update_user_timezone(db, user, payload.timezone)
    except InvalidTimezoneError as exc:
        raise HTTPException(status_code=422, detail=str(exc))

    # "Today" may have moved, so both days' cached food logs are stale.
    invalidate_food_log_cache(user.id, local_date_in(previous))
    effective = coerce_timezone(stored)
    invalidate_food_log_cache(user.id, local_date_in(effective))
    return _status_for(effective)


@router.get("/timezones", response_model=TimezoneOptionsResponse)
def list_timezones() -> TimezoneOptionsResponse:
    return TimezoneOptionsResponse(items=[TimezoneOption(**item) for item in COMMON_TIMEZONES])
