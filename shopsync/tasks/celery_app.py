from datetime import timedelta
from celery import Celery
from shopsync.core.config import settings

def make_celery():
    """Создание и настройка Celery приложения"""

    celery_app = Celery(
        "shopsync",
        broker=settings.CELERY_BROKER_URL,
        backend=settings.CELERY_RESULT_BACKEND,
        include=["shopsync.tasks.sync_tasks"]
    )

    beat_schedule = {
        # Полный цикл с тем же интервалом, что и встроенный планировщик
        'sync-cycle': {
            'task': 'shopsync.tasks.sync_tasks.run_sync_cycle',
            'schedule': timedelta(seconds=settings.SYNC_INTERVAL_SECONDS),
            'args': (),
            'options': {'queue': 'sync'}
        },
    }

    if settings.POS_SYNC_INTERVAL_SECONDS > 0:
        beat_schedule['pos-import'] = {
            'task': 'shopsync.tasks.sync_tasks.run_pos_import',
            'schedule': timedelta(seconds=settings.POS_SYNC_INTERVAL_SECONDS),
            'args': (),
            'options': {'queue': 'sync'}
        }

    celery_app.conf.update(
        timezone=settings.CELERY_TIMEZONE,
        enable_utc=True,

        # Настройки задач
        task_track_started=True,
        task_time_limit=30 * 60,  # 30 минут
        task_soft_time_limit=25 * 60,  # 25 минут

        # Настройки брокера
        broker_connection_retry_on_startup=True,
        broker_connection_max_retries=10,

        # Результаты
        result_expires=3600,  # 1 час

        # Сериализация
        task_serializer='json',
        result_serializer='json',
        accept_content=['json'],

        beat_schedule=beat_schedule,

        task_routes={
            'shopsync.tasks.sync_tasks.*': {'queue': 'sync'},
        },

        # Циклы не должны пересекаться в одном работнике
        worker_prefetch_multiplier=1,
        worker_max_tasks_per_child=1000,
        worker_concurrency=1
    )

    return celery_app

# Создаем экземпляр Celery
celery_app = make_celery()
