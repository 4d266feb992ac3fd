from fastapi import FastAPI

from app.api.auth import router as auth_router
from app.api.food_logs import router as food_logs_router
from app.api.habits import router as habits_router
from app.api.settings import router as settings_router
from app.db.session import create_tables
from app.services.timezones import shutdown_lookup_pool

app = FastAPI(title=".v Life")


@app.on_event("startup")
def on_startup() -> None:
    create_tables()


@app.on_event("shutdown")
def on_shutdown() -> None:
    shutdown_lookup_pool()


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/api")
def api_root() -> dict[str, str]:
    return {"service": ".v Life API", "status": "ok"}


app.include_router(auth_router)
app.include_router(settings_router)
app.include_router(habits_router)
app.include_router(food_logs_router)
