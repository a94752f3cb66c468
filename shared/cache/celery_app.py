"""
Configuración de Celery para tareas periódicas de mantenimiento
"""
from celery import Celery
from celery.schedules import crontab
from kombu import Queue, Exchange
import logging

from shared.config import get_settings

logger = logging.getLogger(__name__)

settings = get_settings()

# Celery necesita un broker aunque el cache esté deshabilitado
BROKER_URL = settings.REDIS_URL or "redis://localhost:6379/0"

celery_app = Celery(
    "vanta",
    broker=BROKER_URL,
    backend=BROKER_URL,
    include=[
        "services.ticketing.tasks.maintenance_tasks",
    ]
)

default_exchange = Exchange("default", type="direct")

celery_app.conf.task_queues = (
    Queue("default", default_exchange, routing_key="default"),
    # Reconciliaciones y expiraciones en batch
    Queue("low_priority", default_exchange, routing_key="low"),
)

celery_app.conf.task_routes = {
    "expire_stale_transfers": {"queue": "low_priority"},
    "reconcile_inventory": {"queue": "low_priority"},
}

celery_app.conf.beat_schedule = {
    "expire-stale-transfers": {
        "task": "expire_stale_transfers",
        "schedule": crontab(minute="*/15"),
    },
    "reconcile-inventory": {
        "task": "reconcile_inventory",
        "schedule": crontab(minute=0),  # Cada hora
    },
}

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",

    timezone="UTC",
    enable_utc=True,

    task_track_started=True,

    task_time_limit=10 * 60,
    task_soft_time_limit=8 * 60,

    worker_prefetch_multiplier=1,

    broker_pool_limit=settings.REDIS_MAX_CONNECTIONS,
    redis_max_connections=settings.REDIS_MAX_CONNECTIONS,

    broker_connection_retry_on_startup=True,
    broker_connection_max_retries=10,

    # ACK late: confirmar tarea solo cuando termina
    task_acks_late=True,
    task_reject_on_worker_lost=True,

    result_expires=3600,

    worker_concurrency=2,
    worker_max_tasks_per_child=1000,

    task_default_queue="default",
    task_default_exchange="default",
    task_default_routing_key="default",
)

logger.info(
    "Celery configurado - Broker: %s, Concurrency: %d",
    BROKER_URL.split("@")[-1],
    celery_app.conf.worker_concurrency
)
