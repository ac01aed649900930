import os
from contextlib import asynccontextmanager

from beanie import init_beanie
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo.errors import ConfigurationError

from socialpulse.models.aggregated_metric import AggregatedMetric
from socialpulse.models.metric import MetricSample
from socialpulse.routes import analytics_routes, cron_routes, predictive_routes
from socialpulse.services.container import build_services
from socialpulse.services.scheduler_service import AggregationScheduler
from socialpulse.utils import config
from socialpulse.utils.errors import AnalyticsError
from socialpulse.utils.logger import logger

db_initialized = False


async def ensure_beanie_initialized():
    global db_initialized
    if db_initialized:
        return

    if not config.MONGODB_URI:
        logger.critical("MONGODB_URI not found")
        return

    try:
        client = AsyncIOMotorClient(config.MONGODB_URI, tz_aware=True)

        # Safely get database name
        try:
            db = client.get_default_database()
        except ConfigurationError:
            # No default db in URI
            db = client[config.MONGODB_DB]

        await init_beanie(database=db, document_models=[MetricSample, AggregatedMetric])
        db_initialized = True
        logger.info("Beanie initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize Beanie: {e}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    await ensure_beanie_initialized()
    app.state.services = build_services()

    scheduler = None
    if config.SCHEDULER_ENABLED and db_initialized:
        scheduler = AggregationScheduler(app.state.services.aggregation, config.SCHEDULER_INTERVAL_SECONDS)
        scheduler.start()

    yield

    if scheduler:
        scheduler.stop()
    await app.state.services.close()


app = FastAPI(title="SocialPulse Analytics Backend", version="1.0.0", lifespan=lifespan)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(AnalyticsError)
async def analytics_error_handler(request: Request, exc: AnalyticsError):
    return JSONResponse(status_code=exc.status_code, content={"detail": str(exc)})


# Include Routers
app.include_router(analytics_routes.router)
app.include_router(predictive_routes.router)
app.include_router(cron_routes.router)


@app.get("/health")
async def health_check():
    try:
        if not db_initialized:
            await ensure_beanie_initialized()

        # Try a simple query
        await MetricSample.find_one({})
        db_status = "connected"
    except Exception as e:
        db_status = f"error: {str(e)}"

    return {
        "status": "ok" if "error" not in db_status else "degraded",
        "message": "SocialPulse analytics backend is running",
        "database": db_status,
        "initialized": db_initialized,
    }


@app.get("/")
async def root():
    return {"message": "Welcome to SocialPulse Analytics API (Python/FastAPI)"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=int(os.getenv("PORT", 3000)), reload=True)
