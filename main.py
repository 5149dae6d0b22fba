# main.py (app, budget-check scheduler and cron endpoints)
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
import uvicorn
from apscheduler.schedulers.background import BackgroundScheduler

from auth import auth_router
from budget_monitor import BudgetCheckInProgress, run_budget_check
from config import configure_logging, settings
from database import get_db, init_db
from router import router
from schemas import BudgetCheckResponse

configure_logging()
logger = logging.getLogger(__name__)


def scheduled_budget_check():
    try:
        run_budget_check()
    except BudgetCheckInProgress:
        logger.warning("Skipping scheduled budget check; a previous run is still active")
    except Exception:
        logger.exception("Error checking budgets")


def create_scheduler() -> BackgroundScheduler:
    scheduler = BackgroundScheduler()
    scheduler.add_job(
        scheduled_budget_check,
        "cron",
        hour=settings.budget_check_hour,
        minute=settings.budget_check_minute,
        id="check-budgets",
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )
    return scheduler


@asynccontextmanager
async def lifespan(_: FastAPI):
    init_db()
    scheduler = None
    if settings.scheduler_enabled:
        scheduler = create_scheduler()
        scheduler.start()
        logger.info(
            "Budget check scheduled daily at %02d:%02d",
            settings.budget_check_hour,
            settings.budget_check_minute,
        )
    yield
    if scheduler is not None:
        scheduler.shutdown(wait=False)


app = FastAPI(title="Personal Finance Tracker API", lifespan=lifespan)


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError):
    logger.error("Database error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


def _verify_cron_secret(provided: Optional[str]):
    if settings.cron_secret and provided != settings.cron_secret:
        raise HTTPException(status_code=401, detail="Unauthorized - not a valid cron request")


def _check_budgets(db: Session):
    try:
        result = run_budget_check(db)
    except BudgetCheckInProgress as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except Exception as exc:
        logger.exception("Error checking budgets")
        return JSONResponse(
            status_code=500,
            content={"error": "Internal server error", "details": str(exc)},
        )

    return BudgetCheckResponse(
        checked=result.checked,
        notifications_sent=result.notifications_sent,
        notifications=[vars(n) for n in result.notifications],
    )


@app.get("/api/cron/check-budgets", response_model=BudgetCheckResponse, tags=["cron"])
def cron_check_budgets(
    x_cron_secret: Optional[str] = Header(None),
    db: Session = Depends(get_db),
):
    _verify_cron_secret(x_cron_secret)
    return _check_budgets(db)


@app.post("/api/cron/check-budgets", response_model=BudgetCheckResponse, tags=["cron"])
def manual_check_budgets(
    x_cron_secret: Optional[str] = Header(None),
    db: Session = Depends(get_db),
):
    _verify_cron_secret(x_cron_secret)
    logger.info("Manual budget check triggered")
    return _check_budgets(db)


app.include_router(router, prefix="/api", tags=["finance"])
app.include_router(auth_router, prefix="/auth", tags=["authentication"])


@app.get("/")
def home():
    return {"message": "Welcome to Personal Finance Tracker API"}


@app.get("/health", tags=["system"])
def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


if __name__ == "__main__":
    uvicorn.run(app, host="127.0.0.1", port=8000)
