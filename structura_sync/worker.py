import logging

from celery import Celery
from celery.signals import worker_ready

from structura_sync.config import (
    APP_NAME,
    APP_VERSION,
    CELERY_BROKER_URL,
    CELERY_RESULT_BACKEND,
    HEALTH_CHECK_INTERVAL,
    LOG_FILE,
    LOG_LEVEL,
    PENDING_COUNT_INTERVAL,
    STORAGE_KEY,
)


def configure_logging(level: str = LOG_LEVEL, log_file: str | None = LOG_FILE) -> None:
    handlers = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers,
    )


configure_logging()
logger = logging.getLogger(__name__)

celery_app = Celery(
    'structura_sync',
    broker=CELERY_BROKER_URL,
    backend=CELERY_RESULT_BACKEND,
    include=['structura_sync.tasks.sync']
)

# Ticks not picked up before the next one is due expire instead of piling up.
celery_app.conf.update(
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone='Europe/Berlin',
    enable_utc=True,
    beat_schedule={
        'drain-pending-requests': {
            'task': 'drain_pending_requests',
            'schedule': HEALTH_CHECK_INTERVAL,
            'options': {'expires': HEALTH_CHECK_INTERVAL},
        },
        'report-pending-requests': {
            'task': 'report_pending_requests',
            'schedule': PENDING_COUNT_INTERVAL,
            'options': {'expires': PENDING_COUNT_INTERVAL},
        },
    }
)


@worker_ready.connect
def on_worker_ready(**kwargs):
    logger.info(f"{APP_NAME} sync worker {APP_VERSION} ready, draining queue '{STORAGE_KEY}'")
