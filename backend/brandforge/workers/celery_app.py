"""
Celery application instance and configuration.
"""

from celery import Celery
from celery.schedules import crontab
from brandforge.core.config import settings

# Create Celery application
celery_app = Celery(
    "brandforge",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
)

# Configure Celery
celery_app.conf.update(
    task_serializer=settings.CELERY_TASK_SERIALIZER,
    result_serializer=settings.CELERY_RESULT_SERIALIZER,
    accept_content=settings.celery_accept_content_list,
    timezone=settings.CELERY_TIMEZONE,
    enable_utc=settings.CELERY_ENABLE_UTC,
    task_track_started=True,
    task_time_limit=6 * 60 * 60,  # 6 hours, an all_users job is long
    task_soft_time_limit=6 * 60 * 60 - 300,
    result_expires=24 * 3600,  # 1 day
    worker_prefetch_multiplier=1,  # one long job per worker process
)

# Celery Beat Schedule (Periodic Tasks)
celery_app.conf.beat_schedule = {
    'reconcile-vectorization-jobs': {
        'task': 'vectorization.reconcile_jobs',
        'schedule': crontab(minute=f'*/{settings.VECTORIZATION_RECONCILE_INTERVAL_MINUTES}'),
        'options': {'queue': 'monitoring'},
    },
}

# Task routing
celery_app.conf.task_routes = {
    'vectorization.run_job': {'queue': 'vectorization'},
    'vectorization.reconcile_jobs': {'queue': 'monitoring'},
}

# Auto-discover tasks from brandforge.tasks
celery_app.autodiscover_tasks(['brandforge.tasks'])
