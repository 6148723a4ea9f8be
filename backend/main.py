"""
FastAPI application entry point for the access graph service

Initializes the FastAPI app, registers routers, and runs the background
jobs of the access pipeline:
    - change feed polling (RecipientEdge -> FeedEntry materialization)
    - pickup of uploads whose processing never started
    - sweep of friendships whose retroactive matching did not finish
    - cleanup of grants for deleted content
"""
from contextlib import asynccontextmanager
from fastapi import FastAPI, Response
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from app.core.config import settings
from app.core.database import engine, Base
from app.core.logging_config import setup_logging, get_logger, work_unit
from app.core.metrics import init_metrics, get_metrics, get_content_type, update_system_metrics
from app.middleware.logging_middleware import RequestLoggingMiddleware
from app.api.v1.content import router as content_router
from app.api.v1.events import router as events_router
from app.api.v1.faces import router as faces_router
from app.api.v1.feed import router as feed_router
from app.api.v1.friendships import router as friendships_router
from app.api.v1.pipeline import router as pipeline_router
from app.api.v1.users import router as users_router
from app.services.access_decision_service import get_access_decision_service
from app.services.cleanup_service import get_cleanup_service
from app.services.face_matching import get_face_matching_client
from app.services.feed_materializer import get_change_feed_consumer
from app.services.retroactive_matching_service import get_retroactive_matching_service

# Application version
APP_VERSION = "1.0.0"

# Initialize structured JSON logging
setup_logging(app_version=APP_VERSION)
logger = get_logger(__name__)

# Initialize Prometheus metrics
init_metrics(version=APP_VERSION)

# Global scheduler instance
scheduler: AsyncIOScheduler = None


async def scheduled_change_feed_poll():
    """Drain the change feed into recipient feeds."""
    try:
        with work_unit("feed-poll"):
            totals = await get_change_feed_consumer().poll_once()
        if totals["applied"] or totals["dead_lettered"]:
            logger.debug(
                f"Change feed poll applied {totals['applied']} records",
                extra={"event_type": "change_feed_poll", **totals}
            )
    except Exception as e:
        logger.error(f"Change feed poll failed: {e}", exc_info=True)


async def scheduled_pending_content_job():
    """Process uploads whose background processing never ran (e.g. restart mid-request)."""
    try:
        with work_unit("pending-content"):
            results = await get_access_decision_service().process_pending()
        if results:
            logger.info(
                f"Processed {len(results)} pending uploads",
                extra={"event_type": "pending_content_processed", "count": len(results)}
            )
    except Exception as e:
        logger.error(f"Pending content job failed: {e}", exc_info=True)


async def scheduled_retroactive_sweep():
    """Resume retroactive matching for accepted friendships that did not finish."""
    try:
        with work_unit("retroactive-sweep"):
            await get_retroactive_matching_service().sweep_incomplete()
    except Exception as e:
        logger.error(f"Retroactive sweep failed: {e}", exc_info=True)


async def scheduled_cleanup_job():
    """Remove grants and feed entries of deleted content; prune consumed change records."""
    try:
        cleanup_service = get_cleanup_service()
        with work_unit("cleanup"):
            stats = await cleanup_service.cleanup_deleted_content()
            pruned = cleanup_service.prune_consumed_changes()
        logger.info(
            f"Scheduled cleanup complete: {stats['edges_deleted']} edges, "
            f"{stats['feed_entries_deleted']} feed entries, {pruned} change records",
            extra={"event_type": "scheduled_cleanup_complete", "changes_pruned": pruned, **stats}
        )
    except Exception as e:
        logger.error(f"Scheduled cleanup failed: {e}", exc_info=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler for startup and shutdown events.

    - Startup: creates database tables and starts the scheduler
    - Shutdown: stops the scheduler and closes the face matching client
    """
    global scheduler

    logger.info(
        "Application starting",
        extra={
            "event_type": "app_startup",
            "version": APP_VERSION,
            "log_level": settings.LOG_LEVEL,
            "debug_mode": settings.DEBUG,
            "face_match_threshold": settings.FACE_MATCH_THRESHOLD,
        }
    )

    # Create database tables (Alembic migrations manage production schemas)
    Base.metadata.create_all(bind=engine)
    logger.info(
        "Database initialized",
        extra={"event_type": "database_init", "status": "success"}
    )

    if settings.SCHEDULER_ENABLED:
        scheduler = AsyncIOScheduler()
        scheduler.add_job(
            scheduled_change_feed_poll,
            trigger=IntervalTrigger(seconds=settings.CHANGE_FEED_POLL_SECONDS),
            id="change_feed_poll",
            name="Materialize recipient feeds from the change feed",
            max_instances=1,
            coalesce=True,
            replace_existing=True
        )
        scheduler.add_job(
            scheduled_pending_content_job,
            trigger=IntervalTrigger(seconds=settings.PENDING_CONTENT_POLL_SECONDS),
            id="pending_content",
            name="Process uploads that were never processed",
            max_instances=1,
            coalesce=True,
            replace_existing=True
        )
        scheduler.add_job(
            scheduled_retroactive_sweep,
            trigger=IntervalTrigger(minutes=settings.RETROACTIVE_SWEEP_MINUTES),
            id="retroactive_sweep",
            name="Resume unfinished retroactive matching",
            max_instances=1,
            coalesce=True,
            replace_existing=True
        )
        scheduler.add_job(
            scheduled_cleanup_job,
            trigger=IntervalTrigger(minutes=settings.CLEANUP_INTERVAL_MINUTES),
            id="grant_cleanup",
            name="Reconcile grants of deleted content",
            max_instances=1,
            coalesce=True,
            replace_existing=True
        )
        scheduler.add_job(
            update_system_metrics,
            trigger=CronTrigger(minute="*"),  # Every minute
            id="system_metrics_update",
            name="Update system resource metrics",
            replace_existing=True
        )
        scheduler.start()
        logger.info(
            "Scheduler started",
            extra={
                "event_type": "scheduler_init",
                "jobs": [job.id for job in scheduler.get_jobs()],
            }
        )

    yield

    logger.info(
        "Application shutting down",
        extra={"event_type": "app_shutdown"}
    )

    if scheduler and scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info(
            "Scheduler stopped",
            extra={"event_type": "scheduler_shutdown"}
        )

    client = get_face_matching_client()
    close = getattr(client, "close", None)
    if close is not None:
        await close()

    logger.info(
        "Application shutdown complete",
        extra={"event_type": "app_shutdown_complete", "version": APP_VERSION}
    )


# Create FastAPI app
app = FastAPI(
    title="Access Graph API",
    description="Face-based content access decisions, recipient graph and feeds",
    version=APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

app.add_middleware(RequestLoggingMiddleware)

app.include_router(users_router, prefix=settings.API_V1_PREFIX)
app.include_router(content_router, prefix=settings.API_V1_PREFIX)
app.include_router(friendships_router, prefix=settings.API_V1_PREFIX)
app.include_router(events_router, prefix=settings.API_V1_PREFIX)
app.include_router(feed_router, prefix=settings.API_V1_PREFIX)
app.include_router(faces_router, prefix=settings.API_V1_PREFIX)
app.include_router(pipeline_router, prefix=settings.API_V1_PREFIX)


@app.get("/")
async def root():
    """Root endpoint - API status check"""
    return {
        "name": "Access Graph API",
        "version": APP_VERSION,
        "status": "running"
    }


@app.get("/health")
async def health_check():
    """Health check endpoint (no authentication required)"""
    return {
        "status": "healthy",
        "scheduler_running": bool(scheduler and scheduler.running),
        "face_matching": get_face_matching_client().get_client_name(),
    }


@app.get("/metrics")
async def prometheus_metrics():
    """Prometheus metrics endpoint for scraping."""
    return Response(
        content=get_metrics(),
        media_type=get_content_type()
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower()
    )
