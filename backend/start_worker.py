"""Start the Celery worker (with embedded beat) that fires raffle timers."""
import sys

from raffledesk.config import settings

if not settings.redis_enabled:
    print("ERROR: REDIS_URL not set. Cannot start Celery worker without Redis.")
    sys.exit(1)

from raffledesk.workers.celery_app import celery_app

if __name__ == "__main__":
    celery_app.worker_main([
        "worker",
        "--beat",
        "--loglevel=info",
        "--queues=timers",
        "--concurrency=2",
        "--max-tasks-per-child=50",
    ])
