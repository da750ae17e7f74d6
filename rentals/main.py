from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from rentals.db import Base, engine
import rentals.models  # noqa: F401 ensure models are imported so tables are known
from rentals.api.routes import router as api_router
from rentals.config import SCHEDULER_ENABLED, RATING_SWEEP_HOURS
from rentals.scheduler import scheduler, start_scheduler, shutdown_scheduler
from rentals.services import InvalidFieldError, ServiceError, run_rating_sweep
from rentals.utils import logger

# create FastAPI instance
app = FastAPI(title="Vehicle Rentals API")
app.include_router(api_router)


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    if isinstance(exc, InvalidFieldError):
        detail = [{"loc": ["body", exc.field], "msg": exc.message, "type": "value_error"}]
    else:
        detail = exc.message
    return JSONResponse(status_code=exc.status_code, content={"detail": detail})


@app.on_event("startup")
def on_startup_create_tables():
    # Ensure database tables are created on startup
    try:
        Base.metadata.create_all(bind=engine)
    except Exception:
        # migrations may own the schema; keep serving
        logger.exception("create_all failed on startup")


@app.on_event("startup")
def on_startup_schedule_jobs():
    if not SCHEDULER_ENABLED:
        return
    scheduler.add_job(run_rating_sweep, "interval", hours=RATING_SWEEP_HOURS,
                      id="rating-sweep", replace_existing=True)
    start_scheduler()


@app.on_event("shutdown")
def on_shutdown_stop_scheduler():
    shutdown_scheduler()
