from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
import uuid
from contextlib import asynccontextmanager
from database import database
from routes import auth, payment, stocks, watchlist, users, admin, content

import os
import logging
from pathlib import Path
from dotenv import load_dotenv
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.jobstores.mongodb import MongoDBJobStore

# Load environment variables
ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Scheduler with MongoDB job store so jobs survive restarts
mongo_url = os.environ.get('MONGO_URL', 'mongodb://localhost:27017')
db_name = os.environ.get('DB_NAME', 'flexbit')

try:
    from pymongo import MongoClient
    jobstores = {
        'default': MongoDBJobStore(
            database=db_name,
            collection='scheduled_jobs',
            client=MongoClient(mongo_url)
        )
    }
    logger.info(f"MongoDB job store configured: {db_name}.scheduled_jobs")
except Exception as e:
    logger.warning(f"Failed to configure MongoDB job store, using memory store: {e}")
    jobstores = {}

scheduler = AsyncIOScheduler(jobstores=jobstores)

# Job runners are shared with the admin run-now endpoint
from job_runner import run_stock_import, run_subscription_expiry_sweep

STOCK_IMPORT_HOUR = int(os.environ.get("STOCK_IMPORT_HOUR", "19"))
STOCK_IMPORT_MINUTE = int(os.environ.get("STOCK_IMPORT_MINUTE", "0"))
STOCK_IMPORT_TIMEZONE = os.environ.get("STOCK_IMPORT_TIMEZONE", "Asia/Jakarta")


def configure_jobs():
    # Daily MySQL -> MongoDB stock import (19:00 WIB by default)
    scheduler.add_job(
        run_stock_import,
        CronTrigger(hour=STOCK_IMPORT_HOUR, minute=STOCK_IMPORT_MINUTE, timezone=STOCK_IMPORT_TIMEZONE),
        id="stock_import",
        name="Daily Stock Import",
        replace_existing=True
    )

    # Expire lapsed growth/pro subscriptions at 00:15 UTC
    scheduler.add_job(
        run_subscription_expiry_sweep,
        CronTrigger(hour=0, minute=15, timezone="UTC"),
        id="subscription_expiry",
        name="Subscription Expiry Sweep",
        replace_existing=True
    )


# Lifespan context manager for startup/shutdown
@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info("Starting FlexBit API")
    await database.connect()

    if not (os.environ.get("MIDTRANS_SERVER_KEY") or "").strip():
        logger.error("MIDTRANS_SERVER_KEY is not set. Checkout and payment notifications will fail.")

    start_scheduler = not os.environ.get("PYTEST_RUNNING")
    if start_scheduler:
        configure_jobs()
        scheduler.start()
        logger.info("Background job scheduler started")

    yield

    # Shutdown
    logger.info("Shutting down FlexBit API")
    if start_scheduler:
        scheduler.shutdown(wait=False)
        logger.info("Background job scheduler stopped")
    await database.close()

# Create FastAPI app
app = FastAPI(
    title="FlexBit API",
    description="Stock analysis and subscription platform",
    version="1.0.0",
    lifespan=lifespan
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=os.environ.get('CORS_ORIGINS', os.environ.get('CLIENT_URL', '*')).split(','),
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(auth.router)
app.include_router(payment.router)
app.include_router(stocks.router)
app.include_router(watchlist.router)
app.include_router(users.router)
app.include_router(admin.router)
app.include_router(content.router)

# Root endpoint
@app.get("/api")
async def root():
    return {
        "service": "FlexBit API",
        "version": "1.0.0",
        "status": "operational"
    }

# Health check
@app.get("/api/health")
async def health_check():
    return {
        "status": "healthy",
        "environment": os.getenv("ENVIRONMENT", "development")
    }

# Validation error handler: log request_id + error locations
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    request_id = str(uuid.uuid4())
    errors = exc.errors()
    logger.warning(
        "Validation failed request_id=%s path=%s errors=%s",
        request_id,
        request.url.path,
        [(e.get("loc"), e.get("msg"), e.get("type")) for e in errors],
    )
    return JSONResponse(
        status_code=422,
        content={"detail": jsonable_errors(errors), "request_id": request_id},
    )


def jsonable_errors(errors):
    # ctx may hold exception instances (e.g. ValueError from validators)
    return [{k: v for k, v in e.items() if k != "ctx"} for e in errors]


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"}
    )

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "server:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", "8001")),
        reload=os.getenv("ENVIRONMENT") == "development"
    )
