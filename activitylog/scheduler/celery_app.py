"""
Celery application configuration.

Change events are routed to activitylog.<n> queues by root entity. Run one
worker with --concurrency=1 per queue so events of a root are applied in order.
"""
from celery import Celery
from celery.schedules import crontab

from activitylog.config import get_settings

settings = get_settings()

app = Celery(
    'activitylog',
    broker=f'redis://{settings.REDIS_HOST}:{settings.REDIS_PORT}/0',
    backend=f'redis://{settings.REDIS_HOST}:{settings.REDIS_PORT}/0',
    include=['activitylog.scheduler.tasks']
)

app.conf.update(
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone='UTC',
    enable_utc=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,  # Keep per-queue order
    worker_max_tasks_per_child=1000,
    task_default_queue='activitylog.0',
)

if settings.ACTIVITY_LOG_AUTO_CLEANUP:
    app.conf.beat_schedule = {
        'purge-expired-activity-logs': {
            'task': 'activitylog.scheduler.tasks.purge_expired_logs',
            'schedule': crontab(hour=3, minute=0),  # 3 AM UTC daily
        },
    }

if __name__ == '__main__':
    app.start()
