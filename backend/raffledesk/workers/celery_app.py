from raffledesk.config import settings


class _NoOpCelery:
    """Stub when Redis is not configured; the in-process sweeper applies timers instead."""

    def task(self, *args, **kwargs):
        def decorator(func):
            func.delay = lambda *a, **k: None
            func.apply_async = lambda *a, **k: None
            return func
        return decorator

    def send_task(self, *args, **kwargs):
        return None

    def autodiscover_tasks(self, *args, **kwargs):
        pass


if settings.redis_enabled:
    from celery import Celery

    from raffledesk.core.logging import setup_logging

    celery_app = Celery(
        "raffledesk",
        broker=settings.CELERY_BROKER_URL,
        backend=settings.CELERY_RESULT_BACKEND,
    )

    setup_logging()

    celery_app.conf.update(
        task_serializer="json",
        accept_content=["json"],
        result_serializer="json",
        timezone="UTC",
        enable_utc=True,
        task_track_started=True,
        task_routes={
            "raffle.*": {"queue": "timers"},
        },
        worker_prefetch_multiplier=1,
        task_acks_late=True,
        worker_max_tasks_per_child=50,
        beat_schedule={
            "sweep-raffle-timers": {
                "task": "raffle.sweep_timers",
                "schedule": float(settings.TIMER_SWEEP_INTERVAL_SECONDS),
            },
        },
    )

    celery_app.autodiscover_tasks(["raffledesk.workers.tasks"], related_name="raffle_tasks")
else:
    celery_app = _NoOpCelery()
