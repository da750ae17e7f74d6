# rentals/scheduler.py
from apscheduler.schedulers.background import BackgroundScheduler
from .utils import logger

scheduler = BackgroundScheduler()

def start_scheduler():
    if not scheduler.running:
        scheduler.start()
        logger.info("Scheduler started")
    return scheduler

def shutdown_scheduler():
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
