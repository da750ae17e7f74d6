# rentals/config.py
"""Runtime settings read from the environment (and a local .env file)."""
import os
from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("POSTGRES_URL")
if not DATABASE_URL:
    raise RuntimeError("POSTGRES_URL not set")

# SQLAlchemy 2.x doesn't accept 'postgres://'
if DATABASE_URL.startswith("postgres://"):
    DATABASE_URL = DATABASE_URL.replace("postgres://", "postgresql+psycopg2://", 1)

DB_POOL_SIZE = int(os.getenv("DB_POOL_SIZE", "5"))
DB_MAX_OVERFLOW = int(os.getenv("DB_MAX_OVERFLOW", "10"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

PAGE_SIZE = int(os.getenv("PAGE_SIZE", "12"))
MAX_PAGE_SIZE = 100
# largest integer a query parameter may bind into an INTEGER column
MAX_QUERY_INT = 2**31 - 1
PAYMENTS_PAGE_SIZE = 10
POPULAR_MIN_VIEWS = int(os.getenv("POPULAR_MIN_VIEWS", "100"))

DELIVERY_FALLBACK_SECONDS = float(os.getenv("DELIVERY_FALLBACK_SECONDS", "3"))
# (longitude, latitude) used when agency coordinates can't be read
DEFAULT_COORDINATES = (-7.0926, 31.7917)

STORAGE_URL = os.getenv("STORAGE_URL", "/storage/")

SCHEDULER_ENABLED = os.getenv("SCHEDULER_ENABLED", "1") == "1"
RATING_SWEEP_HOURS = int(os.getenv("RATING_SWEEP_HOURS", "1"))

API_BASE_URL = os.getenv("API_BASE_URL", "http://localhost:8000")
