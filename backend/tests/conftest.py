from datetime import date, datetime, timedelta
from decimal import Decimal

import pytest

from training import models
from training.collaborators import PaymentGateway, SettingsFacilityConfig
from training.config import Settings
from training.crud import Stores, unit_of_work
from training.db import Base, build_engine, build_sessionmaker
from training.engine import TrainingEngine
from training.exceptions import PaymentError
from training.schemas import SeriesCreate
from training.services.catalog import seed_default_catalog
from training.services.dispatch import SideEffectDispatcher

NOW = datetime(2026, 1, 15, 9, 0)


class Clock:
    def __init__(self, now=NOW):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


class RecordingDispatcher(SideEffectDispatcher):
    def __init__(self, fail_topics=()):
        self.sent = []
        self.fail_topics = set(fail_topics)

    def send(self, effect):
        if effect.topic in self.fail_topics:
            raise ConnectionError("broker unavailable")
        self.sent.append(effect)

    def topics(self):
        return [e.topic for e in self.sent]


class ScriptedPaymentGateway(PaymentGateway):
    def __init__(self):
        self.charges = []
        self.fail = False

    def charge(self, owner_id, amount, reference, purpose):
        if self.fail:
            raise PaymentError("card declined")
        self.charges.append((owner_id, Decimal(amount), reference, purpose))
        return f"txn-{len(self.charges)}"


@pytest.fixture
def db_engine(tmp_path):
    eng = build_engine(f"sqlite:///{tmp_path / 'training.db'}")
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(db_engine):
    factory = build_sessionmaker(db_engine)
    with unit_of_work(factory) as db:
        seed_default_catalog(Stores(db).catalog)
    return factory


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def payments():
    return ScriptedPaymentGateway()


@pytest.fixture
def test_settings():
    return Settings(DATABASE_URL="sqlite://", CELERY_TASK_ALWAYS_EAGER=True)


@pytest.fixture
def engine(session_factory, clock, dispatcher, payments, test_settings):
    return TrainingEngine(
        session_factory,
        facility=SettingsFacilityConfig(test_settings),
        payments=payments,
        dispatcher=dispatcher,
        settings=test_settings,
        clock=clock,
    )


@pytest.fixture
def make_pet(session_factory):
    """Create a pet with current core vaccines; returns its id."""
    counter = {"n": 0}

    def _make(birth_date=date(2025, 3, 1), vaccines=("Rabies", "DHPP", "Bordetella"),
              expiry=date(2027, 1, 1), behavior_flags=(), owner_id=None, age_years=None):
        counter["n"] += 1
        with unit_of_work(session_factory) as db:
            pet = models.Pet(
                owner_id=owner_id or 100 + counter["n"],
                name=f"Dog {counter['n']}",
                birth_date=birth_date,
                age_years=age_years,
                behavior_flags=list(behavior_flags),
            )
            db.add(pet)
            db.flush()
            for name in vaccines:
                db.add(models.VaccinationRecord(pet_id=pet.id, vaccine_name=name, expiry_date=expiry))
            return pet.id

    return _make


@pytest.fixture
def make_series(engine):
    def _make(**overrides):
        data = dict(
            course_type_id="basic-obedience",
            series_name="Basic Obedience - Monday Evenings",
            start_date=date(2026, 2, 2),
            day_of_week=1,
            start_time="18:00",
            duration=60,
            number_of_weeks=6,
            max_capacity=8,
            full_payment_amount=Decimal("200"),
            deposit_required=Decimal("50"),
            status="open",
        )
        data.update(overrides)
        return engine.create_series(SeriesCreate(**data))

    return _make


@pytest.fixture
def attend(engine):
    def _attend(enrollment_id, statuses):
        """Record attendance for sessions 1..len(statuses) in order."""
        outcome = None
        for number, status in enumerate(statuses, start=1):
            outcome = engine.record_attendance(enrollment_id, number, status)
        return outcome

    return _attend


@pytest.fixture
def make_engine(session_factory, clock, dispatcher, payments, test_settings):
    """Engine over the same database with some collaborators swapped."""
    def _make(facility=None, fail_topics=()):
        return TrainingEngine(
            session_factory,
            facility=facility or SettingsFacilityConfig(test_settings),
            payments=payments,
            dispatcher=RecordingDispatcher(fail_topics) if fail_topics else dispatcher,
            settings=test_settings,
            clock=clock,
        )

    return _make
