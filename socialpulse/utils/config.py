"""
Runtime configuration, read from the environment (and a local .env file).
"""
import os
from dotenv import load_dotenv

load_dotenv()


def _flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


MONGODB_URI = os.getenv("MONGODB_URI")
MONGODB_DB = os.getenv("MONGODB_DB", "socialpulse")

REDIS_URL = os.getenv("REDIS_URL")
CACHE_BACKEND = os.getenv("CACHE_BACKEND", "redis" if REDIS_URL else "memory").lower()
CACHE_TTL_SECONDS = int(os.getenv("CACHE_TTL_SECONDS", 300))  # raw samples
AGGREGATED_CACHE_TTL_SECONDS = int(os.getenv("AGGREGATED_CACHE_TTL_SECONDS", 3600))

AGGREGATION_BATCH_SIZE = int(os.getenv("AGGREGATION_BATCH_SIZE", 10))
SCHEDULER_ENABLED = _flag("SCHEDULER_ENABLED", True)
SCHEDULER_INTERVAL_SECONDS = int(os.getenv("SCHEDULER_INTERVAL_SECONDS", 60))

CRON_SECRET = os.getenv("CRON_SECRET", "")

POST_DIRECTORY_URL = os.getenv("POST_DIRECTORY_URL")
POST_DIRECTORY_API_KEY = os.getenv("POST_DIRECTORY_API_KEY")

CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*").split(",")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
