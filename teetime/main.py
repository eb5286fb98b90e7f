import asyncio
import os

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session

from teetime.config import settings
from teetime.database import SessionLocal, get_db
from teetime.logging_config import get_logger, setup_logging
from teetime.models import Booking, MemberProfile, MessageLog, ScheduledJob
from teetime.routers import jobs, webhook
from teetime.services.messaging_service import get_whatsapp_service
from teetime.services.notification_service import claim_due_jobs, process_job

setup_logging(settings.log_level)

app = FastAPI(
    title="TeeTime API",
    description="Conversational tee-time booking over WhatsApp",
    version="0.1.0",
)

cors_env = os.environ.get("CORS_ALLOW_ORIGINS", "*")
cors_origins = [origin.strip() for origin in cors_env.split(",") if origin.strip()]
if not cors_origins:
    cors_origins = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(webhook.router)
app.include_router(jobs.router)

worker_logger = get_logger("notification_worker")
_notification_worker_task: asyncio.Task | None = None


def _is_env_enabled(value: str | None, default: bool = True) -> bool:
    if value is None:
        return default
    return value.strip().lower() not in {"0", "false", "no", "off"}


def _is_notification_worker_enabled() -> bool:
    if os.environ.get("PYTEST_CURRENT_TEST"):
        return False
    return _is_env_enabled(os.environ.get("NOTIFICATION_WORKER_ENABLED"), default=True)


def _get_notification_worker_settings() -> tuple[float, int, int]:
    interval_seconds = float(os.environ.get("NOTIFICATION_WORKER_INTERVAL_SECONDS", "5"))
    interval_seconds = max(interval_seconds, 0.1)
    limit = int(os.environ.get("NOTIFICATION_PROCESS_LIMIT", "20"))
    max_attempts = int(os.environ.get("NOTIFICATION_MAX_ATTEMPTS", "3"))
    return interval_seconds, limit, max_attempts


def run_notification_batch(db: Session, *, limit: int, max_attempts: int) -> dict:
    sender = get_whatsapp_service()
    if sender is None:
        return {"skipped": "twilio_not_configured"}
    results = {"claimed": 0, "sent": 0, "pending": 0, "failed": 0}
    for job in claim_due_jobs(db, limit=limit):
        results["claimed"] += 1
        outcome = process_job(db, job, sender, max_attempts=max_attempts)
        results[outcome] = results.get(outcome, 0) + 1
    return results


async def _notification_worker_loop() -> None:
    while True:
        try:
            interval_seconds, limit, max_attempts = _get_notification_worker_settings()
            await asyncio.sleep(interval_seconds)
            db = SessionLocal()
            try:
                results = await asyncio.to_thread(run_notification_batch, db, limit=limit, max_attempts=max_attempts)
                if results.get("claimed"):
                    worker_logger.info("Notification worker processed", extra={"context": results})
            finally:
                db.close()
        except asyncio.CancelledError:
            break
        except Exception as exc:
            worker_logger.error(
                "Notification worker loop failed",
                extra={"context": {"error": str(exc)}},
            )


@app.on_event("startup")
async def start_notification_worker() -> None:
    global _notification_worker_task
    if not _is_notification_worker_enabled():
        return
    if _notification_worker_task is None or _notification_worker_task.done():
        _notification_worker_task = asyncio.create_task(_notification_worker_loop())
        worker_logger.info("Notification worker started")


@app.on_event("shutdown")
async def stop_notification_worker() -> None:
    global _notification_worker_task
    if _notification_worker_task is None:
        return
    _notification_worker_task.cancel()
    try:
        await _notification_worker_task
    except asyncio.CancelledError:
        pass
    _notification_worker_task = None


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/db-check")
def db_check(db: Session = Depends(get_db)):
    return {
        "status": "ok",
        "members": db.query(MemberProfile).count(),
        "bookings": db.query(Booking).count(),
        "messages": db.query(MessageLog).count(),
        "scheduled_jobs": db.query(ScheduledJob).count(),
    }
