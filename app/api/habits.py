import logging
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Path, status
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.api.auth import get_current_user
from app.core.timezone import is_due_for_reset, local_date_in
from app.db.models import Habit, HabitLog, User
from app.db.session import get_db
from app.services.timezones import TIMEZONE_LOOKUP_TIMEOUT_SECONDS, resolve_user_timezone

logger = logging.getLogger("uvicorn.error")

router = APIRouter(prefix="/habits", tags=["habits"])

PROGRESS_WINDOW_DAYS = 7


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class HabitCategory(str, Enum):
    fitness = "fitness"
    nutrition = "nutrition"
    mindfulness = "mindfulness"
    sleep = "sleep"
    other = "other"


class HabitFrequency(str, Enum):
    daily = "daily"
    weekly = "weekly"


DEFAULT_HABITS: list[tuple[str, HabitCategory]] = [
    ("Morning Workout", HabitCategory.fitness),
    ("Protein Intake", HabitCategory.nutrition),
    ("8 Glasses of Water", HabitCategory.nutrition),
    ("Evening Stretch", HabitCategory.fitness),
]


class HabitWriteRequest(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    category: HabitCategory = HabitCategory.other
    frequency: HabitFrequency = HabitFrequency.daily


class HabitItem(BaseModel):
    id: int
    name: str
    category: HabitCategory
    frequency: HabitFrequency
    current_streak: int
    best_streak: int
    completed: bool = False
    log_id: Optional[int] = None
    created_at: datetime


class HabitListResponse(BaseModel):
    today: str
    timezone: str
    reset_performed: bool
    habits: list[HabitItem]


class HabitSeedResponse(BaseModel):
    created: int
    message: str


class HabitProgressResponse(BaseModel):
    progress: int
    start_date: str
    end_date: str


def _to_item(row: Habit, log: Optional[HabitLog] = None) -> HabitItem:
    return HabitItem(
        id=row.id,
        name=row.name,
        category=HabitCategory(row.category),
        frequency=HabitFrequency(row.frequency),
        current_streak=row.current_streak or 0,
        best_streak=row.best_streak or 0,
        completed=bool(log.completed) if log else False,
        log_id=log.id if log else None,
        created_at=row.created_at,
    )


def _owned_habit(db: Session, user: User, habit_id: int) -> Habit:
    row = db.query(Habit).filter(Habit.id == habit_id, Habit.user_id == user.id).first()
    if not row:
        raise HTTPException(status_code=404, detail="Habit not found")
    return row


def check_and_reset_habits_if_needed(
    db: Session, user: User, timezone_name: str, now: Optional[datetime] = None
) -> bool:
    """Record today's reset once per local day.

    Old habit logs are kept; a new day simply has no logs yet. Returns True
    when a reset was recorded.
    """
    if not is_due_for_reset(user.last_habit_reset, timezone_name, now):
        return False
    today = local_date_in(timezone_name, now)
    try:
        user.last_habit_reset = today
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.warning("habit_reset_failed user_id=%s detail=%s", user.id, str(exc)[:220])
        return False
    logger.info("habit_reset user_id=%s date=%s timezone=%s", user.id, today, timezone_name)
    return True


@router.get("", response_model=HabitListResponse)
def get_user_habits(user: User = Depends(get_current_user), db: Session = Depends(get_db)) -> HabitListResponse:
    timezone_name = resolve_user_timezone(db, user.id, timeout_seconds=TIMEZONE_LOOKUP_TIMEOUT_SECONDS)
    # One clock reading, so the reset and the listed day cannot straddle midnight.
    now = _utc_now()
    reset_performed = check_and_reset_habits_if_needed(db, user, timezone_name, now)
    today = local_date_in(timezone_name, now)

    habits = db.query(Habit).filter(Habit.user_id == user.id).order_by(Habit.created_at.asc(), Habit.id.asc()).all()
    logs = db.query(HabitLog).filter(HabitLog.user_id == user.id, HabitLog.logged_at == today).all()
    logs_by_habit = {log.habit_id: log for log in logs}
    return HabitListResponse(
        today=today,
        timezone=timezone_name,
        reset_performed=reset_performed,
        habits=[_to_item(row, logs_by_habit.get(row.id)) for row in habits],
    )


@router.post("", response_model=HabitItem, status_code=status.HTTP_201_CREATED)
def create_habit(
    payload: HabitWriteRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> HabitItem:
    row = Habit(
        user_id=user.id,
        name=payload.name.strip(),
        category=payload.category.value,
        frequency=payload.frequency.value,
        current_streak=0,
        best_streak=0,
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    return _to_item(row)


@router.post("/defaults", response_model=HabitSeedResponse)
def create_default_habits(user: User = Depends(get_current_user), db: Session = Depends(get_db)) -> HabitSeedResponse:
    existing = db.query(Habit.id).filter(Habit.user_id == user.id).first()
    if existing:
        return HabitSeedResponse(created=0, message="Habits already exist")
    db.add_all(
        [
            Habit(
                user_id=user.id,
                name=name,
                category=category.value,
                frequency=HabitFrequency.daily.value,
                current_streak=0,
                best_streak=0,
            )
            for name, category in DEFAULT_HABITS
        ]
    )
    db.commit()
    return HabitSeedResponse(created=len(DEFAULT_HABITS), message="Default habits created")


@router.get("/progress", response_model=HabitProgressResponse)
def get_weekly_progress(user: User = Depends(get_current_user), db: Session = Depends(get_db)) -> HabitProgressResponse:
    timezone_name = resolve_user_timezone(db, user.id, timeout_seconds=TIMEZONE_LOOKUP_TIMEOUT_SECONDS)
    today = local_date_in(timezone_name)
    start = (date.fromisoformat(today) - timedelta(days=PROGRESS_WINDOW_DAYS - 1)).isoformat()

    habit_count = db.query(Habit).filter(Habit.user_id == user.id).count()
    if habit_count == 0:
        return HabitProgressResponse(progress=0, start_date=start, end_date=today)

    completed_count = (
        db.query(HabitLog)
        .filter(
            HabitLog.user_id == user.id,
            HabitLog.completed.is_(True),
            HabitLog.logged_at >= start,
            HabitLog.logged_at <= today,
        )
        .count()
    )
    total_possible = habit_count * PROGRESS_WINDOW_DAYS
    return HabitProgressResponse(
        progress=round(completed_count / total_possible * 100),
        start_date=start,
        end_date=today,
    )


@router.put("/{habit_id}", response_model=HabitItem)
def update_habit(
    payload: HabitWriteRequest,
    habit_id: int = Path(...),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> HabitItem:
    row = _owned_habit(db, user, habit_id)
    row.name = payload.name.strip()
    row.category = payload.category.value
    row.frequency = payload.frequency.value
    db.commit()
    db.refresh(row)
    return _to_item(row)


@router.delete("/{habit_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_habit(
    habit_id: int = Path(...),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> None:
    row = _owned_habit(db, user, habit_id)
    db.delete(row)
    db.commit()


@router.post("/{habit_id}/toggle", response_model=HabitItem)
def toggle_habit_completion(
    habit_id: int = Path(...),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> HabitItem:
    row = _owned_habit(db, user, habit_id)
    timezone_name = resolve_user_timezone(db, user.id, timeout_seconds=TIMEZONE_LOOKUP_TIMEOUT_SECONDS)
    today = local_date_in(timezone_name)

    log = db.query(HabitLog).filter(HabitLog.habit_id == row.id, HabitLog.logged_at == today).first()
    if not log:
        log = HabitLog(user_id=user.id, habit_id=row.id, logged_at=today, completed=False)
        db.add(log)
    log.completed = not log.completed

    if log.completed:
        row.current_streak = (row.current_streak or 0) + 1
        row.best_streak = max(row.current_streak, row.best_streak or 0)
    else:
        row.current_streak = 0
    db.commit()
    db.refresh(row)
    db.refresh(log)
    return _to_item(row, log)
