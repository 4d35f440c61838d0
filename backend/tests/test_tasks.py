from decimal import Decimal

import pytest

from training import collaborators, tasks
from training.collaborators import Notifier
from training.services import dispatch
from training.services.dispatch import CeleryDispatcher
from training.tasks import celery_app, deliver_notification


class InboxNotifier(Notifier):
    def __init__(self):
        self.inbox = []

    def send(self, kind, owner_id, payload):
        self.inbox.append((kind, owner_id, payload))


@pytest.fixture
def worker_collaborators(monkeypatch, payments):
    notifier = InboxNotifier()
    monkeypatch.setitem(collaborators._registry, "notifier", notifier)
    monkeypatch.setitem(collaborators._registry, "payments", payments)
    monkeypatch.setitem(celery_app.conf, "task_always_eager", True)
    return notifier, payments


def test_notification_task_uses_registered_notifier(worker_collaborators):
    notifier, _ = worker_collaborators
    result = deliver_notification("waitlist_offer", 5, {"series_id": 1})
    assert result["status"] == "ok"
    assert notifier.inbox == [("waitlist_offer", 5, {"series_id": 1})]


def test_celery_dispatcher_delivers_effects(worker_collaborators):
    notifier, payments = worker_collaborators

    warnings = CeleryDispatcher().dispatch([
        dispatch.notification("makeup_reminder", 9, makeup_session_id=3),
        dispatch.payment("makeup", 9, Decimal("45.00"), "makeup-3"),
    ])

    assert warnings == []
    assert notifier.inbox == [("makeup_reminder", 9, {"makeup_session_id": 3})]
    assert payments.charges == [(9, Decimal("45.00"), "makeup-3", "makeup")]


def test_sweep_is_scheduled():
    entry = celery_app.conf.beat_schedule["sweep-waitlist-offers"]
    assert entry["task"] == "training.tasks.sweep_waitlist_offers"


def test_sweep_task_passes_expired_offers_on(worker_collaborators, monkeypatch, engine, session_factory, make_pet, make_series):
    notifier, _ = worker_collaborators
    monkeypatch.setattr(tasks, "SessionLocal", session_factory)

    series = make_series(max_capacity=1)
    enrolled = engine.book(make_pet(), series.id).enrollment
    first = engine.book(make_pet(), series.id).enrollment
    second = engine.book(make_pet(), series.id).enrollment
    engine.drop(enrolled.id)
    # the offer was made on the frozen test clock, long before the worker's wall clock

    result = tasks.sweep_waitlist_offers.delay().get()

    assert result == {"status": "ok", "expired": 1}
    assert engine.get_enrollment(first.id).dropped_reason == "offer_expired"
    assert engine.get_enrollment(second.id).offer_expires_at is not None
    assert engine.get_series(series.id).held_slots == 1
    assert [kind for kind, _, _ in notifier.inbox] == ["waitlist_offer_expired", "waitlist_offer"]
