import logging
from datetime import date, datetime, timezone
from enum import Enum
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Path, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.api.auth import get_current_user
from app.core.cache import BoundedCache
from app.core.timezone import local_date_in
from app.db.models import FoodLog, User
from app.db.session import get_db
from app.services.timezones import TIMEZONE_LOOKUP_TIMEOUT_SECONDS, resolve_user_timezone

logger = logging.getLogger("uvicorn.error")

router = APIRouter(prefix="/food-logs", tags=["food-logs"])

# Shared by every request in the process; keyed "<user_id>:<YYYY-MM-DD>".
food_log_cache = BoundedCache()


class MealType(str, Enum):
    breakfast = "Breakfast"
    lunch = "Lunch"
    dinner = "Dinner"
    snack = "Snack"


class InputType(str, Enum):
    text = "text"
    voice = "voice"
    image = "image"
    manual = "manual"


class FoodItemInput(BaseModel):
    name: str = Field(min_length=1, max_length=160)
    quantity: float = Field(default=1.0, gt=0)
    unit: str = Field(default="serving", min_length=1, max_length=32)
    calories: float = Field(default=0.0, ge=0)
    protein: float = Field(default=0.0, ge=0)
    carbs: float = Field(default=0.0, ge=0)
    fat: float = Field(default=0.0, ge=0)
    fiber: float = Field(default=0.0, ge=0)
    sugar: float = Field(default=0.0, ge=0)
    sodium: float = Field(default=0.0, ge=0)


class FoodLogCreateRequest(BaseModel):
    foods: list[FoodItemInput] = Field(min_length=1, max_length=50)
    meal_type: MealType
    original_input: Optional[str] = Field(default=None, max_length=2000)
    input_type: InputType = InputType.manual
    logged_date: Optional[date] = None


class FoodLogUpdateRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=160)
    quantity: Optional[float] = Field(default=None, gt=0)
    unit: Optional[str] = Field(default=None, min_length=1, max_length=32)
    calories: Optional[float] = Field(default=None, ge=0)
    protein: Optional[float] = Field(default=None, ge=0)
    carbs: Optional[float] = Field(default=None, ge=0)
    fat: Optional[float] = Field(default=None, ge=0)
    fiber: Optional[float] = Field(default=None, ge=0)
    sugar: Optional[float] = Field(default=None, ge=0)
    sodium: Optional[float] = Field(default=None, ge=0)
    meal_type: Optional[MealType] = None
    logged_date: Optional[date] = None


class FoodLogItem(BaseModel):
    id: int
    name: str
    quantity: float
    unit: str
    calories: float
    protein: float
    carbs: float
    fat: float
    fiber: float
    sugar: float
    sodium: float
    meal_type: MealType
    logged_date: str
    logged_at: datetime
    original_input: Optional[str] = None
    input_type: InputType
    is_edited: bool


class DailyFoodSummary(BaseModel):
    date: str
    total_calories: float
    total_protein: float
    total_carbs: float
    total_fat: float
    meal_breakdown: dict[str, float]


class FoodLogDayResponse(BaseModel):
    date: str
    logs: list[FoodLogItem]
    summary: DailyFoodSummary
    cached: bool = False


class FoodLogCreateResponse(BaseModel):
    entries: list[FoodLogItem]


class FoodLogHistoryResponse(BaseModel):
    entries: list[FoodLogItem]
    summaries: list[DailyFoodSummary]


def food_log_cache_key(user_id: int, log_date: str) -> str:
    return f"{user_id}:{log_date}"


def invalidate_food_log_cache(user_id: int, log_date: str) -> None:
    food_log_cache.invalidate(food_log_cache_key(user_id, log_date))


def _to_item(row: FoodLog) -> FoodLogItem:
    return FoodLogItem(
        id=row.id,
        name=row.name,
        quantity=row.quantity or 1.0,
        unit=row.unit or "serving",
        calories=row.calories or 0.0,
        protein=row.protein or 0.0,
        carbs=row.carbs or 0.0,
        fat=row.fat or 0.0,
        fiber=row.fiber or 0.0,
        sugar=row.sugar or 0.0,
        sodium=row.sodium or 0.0,
        meal_type=MealType(row.meal_type),
        logged_date=row.logged_date,
        logged_at=row.logged_at,
        original_input=row.original_input,
        input_type=InputType(row.input_type or "text"),
        is_edited=bool(row.is_edited),
    )


def build_daily_summary(log_date: str, logs: list[FoodLogItem]) -> DailyFoodSummary:
    meal_breakdown = {meal.value: 0.0 for meal in MealType}
    for log in logs:
        meal_breakdown[log.meal_type.value] += log.calories
    return DailyFoodSummary(
        date=log_date,
        total_calories=sum(log.calories for log in logs),
        total_protein=sum(log.protein for log in logs),
        total_carbs=sum(log.carbs for log in logs),
        total_fat=sum(log.fat for log in logs),
        meal_breakdown=meal_breakdown,
    )


def _load_day(db: Session, user_id: int, log_date: str) -> FoodLogDayResponse:
    rows = (
        db.query(FoodLog)
        .filter(FoodLog.user_id == user_id, FoodLog.logged_date == log_date)
        .order_by(FoodLog.logged_at.asc(), FoodLog.id.asc())
        .all()
    )
    logs = [_to_item(row) for row in rows]
    return FoodLogDayResponse(date=log_date, logs=logs, summary=build_daily_summary(log_date, logs))


def _today_for(db: Session, user: User) -> str:
    timezone_name = resolve_user_timezone(db, user.id, timeout_seconds=TIMEZONE_LOOKUP_TIMEOUT_SECONDS)
    return local_date_in(timezone_name)


def _owned_row(db: Session, user: User, log_id: int) -> FoodLog:
    row = db.query(FoodLog).filter(FoodLog.id == log_id, FoodLog.user_id == user.id).first()
    if not row:
        raise HTTPException(status_code=404, detail="Food log not found")
    return row


@router.get("", response_model=FoodLogDayResponse)
def get_food_logs_for_date(
    log_date: Optional[date] = Query(default=None, alias="date"),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> FoodLogDayResponse:
    target = log_date.isoformat() if log_date else _today_for(db, user)
    key = food_log_cache_key(user.id, target)
    cached = food_log_cache.get(key)
    if cached is not None:
        return cached.model_copy(update={"cached": True})

    day = _load_day(db, user.id, target)
    food_log_cache.set(key, day)
    return day


@router.get("/history", response_model=FoodLogHistoryResponse)
def get_food_log_history(
    from_date: date = Query(alias="from"),
    to_date: date = Query(alias="to"),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> FoodLogHistoryResponse:
    if from_date > to_date:
        raise HTTPException(status_code=422, detail="from must not be after to")
    rows = (
        db.query(FoodLog)
        .filter(
            FoodLog.user_id == user.id,
            FoodLog.logged_date >= from_date.isoformat(),
            FoodLog.logged_date <= to_date.isoformat(),
        )
        .order_by(FoodLog.logged_date.desc(), FoodLog.logged_at.asc(), FoodLog.id.asc())
        .all()
    )
    entries = [_to_item(row) for row in rows]
    grouped: dict[str, list[FoodLogItem]] = {}
    for entry in entries:
        grouped.setdefault(entry.logged_date, []).append(entry)
    summaries = [build_daily_summary(day, logs) for day, logs in grouped.items()]
    return FoodLogHistoryResponse(entries=entries, summaries=summaries)


@router.post("", response_model=FoodLogCreateResponse, status_code=status.HTTP_201_CREATED)
def log_food(
    payload: FoodLogCreateRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> FoodLogCreateResponse:
    target = payload.logged_date.isoformat() if payload.logged_date else _today_for(db, user)
    logged_at = datetime.now(timezone.utc)
    rows = [
        FoodLog(
            user_id=user.id,
            name=food.name.strip(),
            quantity=food.quantity,
            unit=food.unit.strip(),
            calories=food.calories,
            protein=food.protein,
            carbs=food.carbs,
            fat=food.fat,
            fiber=food.fiber,
            sugar=food.sugar,
            sodium=food.sodium,
            meal_type=payload.meal_type.value,
            logged_date=target,
            logged_at=logged_at,
            original_input=payload.original_input,
            input_type=payload.input_type.value,
        )
        for food in payload.foods
    ]
    db.add_all(rows)
    db.commit()
    for row in rows:
        db.refresh(row)
    invalidate_food_log_cache(user.id, target)
    logger.info("food_logged user_id=%s date=%s entries=%s", user.id, target, len(rows))
    return FoodLogCreateResponse(entries=[_to_item(row) for row in rows])


@router.patch("/{log_id}", response_model=FoodLogItem)
def update_food_log(
    payload: FoodLogUpdateRequest,
    log_id: int = Path(...),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> FoodLogItem:
    row = _owned_row(db, user, log_id)
    previous_date = row.logged_date
    updates = payload.model_dump(exclude_unset=True, exclude_none=True)
    if "meal_type" in updates:
        updates["meal_type"] = updates["meal_type"].value
    if "logged_date" in updates:
        updates["logged_date"] = updates["logged_date"].isoformat()
    for field, value in updates.items():
        setattr(row, field, value)
    row.is_edited = True
    row.edited_at = datetime.now(timezone.utc)
    db.commit()
    db.refresh(row)
    invalidate_food_log_cache(user.id, previous_date)
    invalidate_food_log_cache(user.id, row.logged_date)
    return _to_item(row)


@router.delete("/{log_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_food_log(
    log_id: int = Path(...),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> None:
    row = _owned_row(db, user, log_id)
    log_date = row.logged_date
    db.delete(row)
    db.commit()
    invalidate_food_log_cache(user.id, log_date)
