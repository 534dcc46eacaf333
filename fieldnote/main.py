"""
Fieldnote - Main FastAPI application.
A Slack bot that turns team conversations into LinkedIn/X post drafts.
"""
from fastapi import FastAPI, Request, BackgroundTasks, Depends, Header
from fastapi.responses import JSONResponse
from slack_bolt.adapter.socket_mode.async_handler import AsyncSocketModeHandler
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional
import hmac
import logging

from fieldnote.config import Settings, get_settings
from fieldnote.slack_handler import SlackBot

logger = logging.getLogger(__name__)

# Scheduler for the daily digest
scheduler = AsyncIOScheduler()


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )


async def scheduled_digest_run(slack_bot: SlackBot, user_id: str):
    """Daily digest for the primary user."""
    logger.info("Daily digest triggered (in-process)")
    try:
        await slack_bot.run_digest(user_id)
    except Exception as e:
        logger.error(f"Daily digest job failed: {e}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    settings = get_settings()
    configure_logging(settings.log_level)

    # Startup
    logger.info("Starting Fieldnote...")

    slack_bot = SlackBot(settings)
    app.state.slack_bot = slack_bot

    socket_handler = AsyncSocketModeHandler(
        slack_bot.get_app(),
        settings.slack_app_token
    )
    await socket_handler.connect_async()
    logger.info("Socket Mode handler connected")

    if settings.slack_primary_user_id:
        scheduler.add_job(
            scheduled_digest_run,
            CronTrigger(hour=settings.daily_digest_hour, timezone=settings.default_timezone),
            args=[slack_bot, settings.slack_primary_user_id],
            id="daily_digest",
            replace_existing=True
        )
        scheduler.start()
        logger.info(f"Daily digest scheduled for {settings.daily_digest_hour}:00 "
                    f"{settings.default_timezone}")
    else:
        logger.info("No SLACK_PRIMARY_USER_ID set, daily digest disabled")

    logger.info(f"Fetching messages from channels: {', '.join(settings.channel_ids)}")

    yield

    # Shutdown
    logger.info("Shutting down Fieldnote...")
    await socket_handler.close_async()
    if scheduler.running:
        scheduler.shutdown()


# Create FastAPI app
app = FastAPI(
    title="Fieldnote",
    description="Slack bot that turns team conversations into post drafts",
    version="1.0.0",
    lifespan=lifespan
)


def get_slack_bot(request: Request) -> SlackBot:
    return request.app.state.slack_bot


def _authorized(settings: Settings, authorization: Optional[str]) -> bool:
    """Check the cron trigger's bearer token against the shared secret."""
    if not settings.cron_secret:
        return True
    expected = f"Bearer {settings.cron_secret}"
    return hmac.compare_digest((authorization or "").encode(), expected.encode())


# ============================================================
# Routes
# ============================================================

@app.get("/")
async def root():
    """Liveness check."""
    return {"status": "ok", "service": "Fieldnote"}


@app.get("/health")
async def health(settings: Settings = Depends(get_settings)):
    """Detailed health check."""
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "timezone": settings.default_timezone,
        "channels": settings.channel_ids,
    }


@app.post("/trigger-digest")
async def trigger_digest(
    background_tasks: BackgroundTasks,
    authorization: Optional[str] = Header(default=None),
    settings: Settings = Depends(get_settings),
    slack_bot: SlackBot = Depends(get_slack_bot)
):
    """
    Queue a digest for the primary user.
    Called by an external cron service; guarded by CRON_SECRET.
    """
    if not _authorized(settings, authorization):
        logger.warning("Unauthorized digest trigger attempt")
        return JSONResponse(
            status_code=401,
            content={"status": "error", "message": "Unauthorized"}
        )

    if not settings.slack_primary_user_id:
        return JSONResponse(
            status_code=400,
            content={"status": "error", "message": "No primary user configured"}
        )

    logger.info("Digest trigger requested")
    background_tasks.add_task(slack_bot.run_digest, settings.slack_primary_user_id)
    return {"status": "triggered", "message": "Digest run queued"}


# ============================================================
# Error Handlers
# ============================================================

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle uncaught exceptions."""
    logger.error(f"Unhandled exception: {exc}")
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error"}
    )


# ============================================================
# Main Entry Point
# ============================================================

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "fieldnote.main:app",
        host="0.0.0.0",
        port=3000
    )
