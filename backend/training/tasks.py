# backend/training/tasks.py
import logging
from decimal import Decimal

from celery import Celery

from . import collaborators
from .config import settings
from .db import SessionLocal

logger = logging.getLogger(__name__)

celery_app = Celery(
    "training_tasks",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL
)
celery_app.conf.task_always_eager = settings.CELERY_TASK_ALWAYS_EAGER
celery_app.conf.beat_schedule = {
    "sweep-waitlist-offers": {
        "task": "training.tasks.sweep_waitlist_offers",
        "schedule": float(settings.WAITLIST_SWEEP_INTERVAL_SECONDS),
    },
    "refresh-series-statuses": {
        "task": "training.tasks.refresh_series_statuses",
        "schedule": 3600.0,
    },
}


@celery_app.task(name="training.tasks.sweep_waitlist_offers")
def sweep_waitlist_offers():
    from .engine import TrainingEngine

    expired = TrainingEngine(SessionLocal).expire_waitlist_offers()
    return {"status": "ok", "expired": expired}


@celery_app.task(name="training.tasks.refresh_series_statuses")
def refresh_series_statuses():
    from .engine import TrainingEngine

    changed = TrainingEngine(SessionLocal).refresh_series_statuses()
    return {"status": "ok", "changed": changed}


@celery_app.task(
    name="training.tasks.deliver_notification",
    autoretry_for=(Exception,),
    retry_backoff=True,
    max_retries=settings.SIDE_EFFECT_MAX_RETRIES,
)
def deliver_notification(kind: str, owner_id: int, payload: dict):
    collaborators.get_notifier().send(kind, owner_id, payload)
    return {"status": "ok", "kind": kind, "owner_id": owner_id}


@celery_app.task(
    name="training.tasks.capture_payment",
    autoretry_for=(Exception,),
    retry_backoff=True,
    max_retries=settings.SIDE_EFFECT_MAX_RETRIES,
)
def capture_payment(owner_id: int, amount: str, reference: str, purpose: str):
    # amount travels as a string so the JSON serializer keeps it exact
    txn = collaborators.get_payment_gateway().charge(owner_id, Decimal(amount), reference, purpose)
    logger.info("Captured %s for %s (%s)", amount, reference, txn)
    return {"status": "ok", "reference": reference, "transaction": txn}
