"""HoldingDash — FastAPI Application."""
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from apscheduler.schedulers.asyncio import AsyncIOScheduler
import logging

from holdingdash.config import settings
from holdingdash.database import async_engine, AsyncSessionLocal
from holdingdash.errors import HoldingDashError

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

scheduler = AsyncIOScheduler()


async def run_expense_reminders():
    """Remind about unpaid expenses falling due shortly."""
    from holdingdash.services.expense_reminders import send_expense_reminders

    try:
        async with AsyncSessionLocal() as db:
            summary = await send_expense_reminders(db)
        logger.info(
            f"Expense reminders: {summary['expenses']} due, delivered={summary.get('delivered', False)}"
        )
    except Exception as e:
        logger.error(f"Expense reminder job failed: {e}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting HoldingDash API...")

    # Verify DB connection
    try:
        async with async_engine.begin() as conn:
            await conn.exec_driver_sql("SELECT 1")
        logger.info("Database connection verified")
    except Exception as e:
        logger.error(f"Database connection failed: {e}")

    # Schedule jobs
    if settings.SCHEDULER_ENABLED:
        scheduler.add_job(
            run_expense_reminders,
            "cron",
            hour=settings.EXPENSE_REMINDER_HOUR,
            id="expense_reminders",
            replace_existing=True,
        )
        scheduler.start()
        logger.info("Scheduled jobs started (expense reminders)")

    logger.info("HoldingDash API started successfully")
    yield

    # Shutdown
    if scheduler.running:
        scheduler.shutdown()
    await async_engine.dispose()
    logger.info("HoldingDash API shut down")


app = FastAPI(
    title="HoldingDash",
    description="Multi-enterprise business dashboard — permissions, staff costs, revenue and exchange rates",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(HoldingDashError)
async def holdingdash_error_handler(request: Request, exc: HoldingDashError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path}: {exc.message}")
    else:
        logger.warning(f"{request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


# Import and register routers
from holdingdash.routes import admin, auth, dashboard, enterprises, exchange_rates, users

app.include_router(auth.router)
app.include_router(admin.router)
app.include_router(users.router)
app.include_router(enterprises.router)
app.include_router(dashboard.router)
app.include_router(exchange_rates.router)


@app.get("/api/health")
async def health_check():
    return {"status": "healthy", "service": "HoldingDash API", "version": "1.0.0"}
