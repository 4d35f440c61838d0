# backend/training/collaborators.py
"""
Contracts for the services the engine talks to but does not own, plus the
default implementations shipped with the repository.

    VaccinationStore  read-only vaccination lookup by pet id
    FacilityConfig    makeup pricing, behavioral rules, prerequisite overrides
    PaymentGateway    deposit / full / makeup charges
    Notifier          waitlist offers, makeup reminders, certificates

Celery workers resolve the payment gateway and notifier through `configure()`
/ `get_payment_gateway()` / `get_notifier()`, since task arguments must stay
serializable.
"""
import logging
from decimal import Decimal
from typing import Dict, List, Mapping, Optional

from . import models
from .config import Settings, settings as default_settings
from .exceptions import PaymentError
from .schemas import BehavioralRule, FixedPricing, PercentagePricing, PerSessionPricing
from .services.catalog import DEFAULT_BEHAVIORAL_RULES

logger = logging.getLogger(__name__)


# ---------------------------------------------------------
# Vaccination records
# ---------------------------------------------------------
class VaccinationStore:
    def records_for(self, pet_id: int) -> list:
        raise NotImplementedError


class SqlVaccinationStore(VaccinationStore):
    def __init__(self, session_factory):
        self.session_factory = session_factory

    def records_for(self, pet_id: int) -> list:
        db = self.session_factory()
        try:
            rows = (
                db.query(models.VaccinationRecord)
                .filter(models.VaccinationRecord.pet_id == pet_id)
                .order_by(models.VaccinationRecord.expiry_date)
                .all()
            )
            for r in rows:
                db.expunge(r)
            return rows
        finally:
            db.close()


# ---------------------------------------------------------
# Facility configuration
# ---------------------------------------------------------
class FacilityConfig:
    def makeup_pricing(self):
        raise NotImplementedError

    def behavioral_rules(self) -> List[BehavioralRule]:
        return []

    def prerequisite_overrides(self) -> Mapping[str, List[str]]:
        return {}

    def makeup_credits_per_enrollment(self) -> int:
        return 1


class SettingsFacilityConfig(FacilityConfig):
    """Facility configuration read from Settings, with in-code rule lists."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        behavioral_rules: Optional[List[BehavioralRule]] = None,
        prerequisite_overrides: Optional[Dict[str, List[str]]] = None,
        pricing=None,
    ):
        self.settings = settings or default_settings
        self._rules = list(DEFAULT_BEHAVIORAL_RULES if behavioral_rules is None else behavioral_rules)
        self._overrides = dict(prerequisite_overrides or {})
        self._pricing = pricing

    def makeup_pricing(self):
        if self._pricing is not None:
            return self._pricing
        kind = self.settings.MAKEUP_PRICING_KIND
        if kind == "percentage":
            return PercentagePricing(percentage_of_series=self.settings.MAKEUP_PERCENTAGE_OF_SERIES)
        if kind == "per_session":
            return PerSessionPricing(amount=self.settings.MAKEUP_PER_SESSION_PRICE)
        return FixedPricing(amount=self.settings.MAKEUP_FIXED_PRICE)

    def behavioral_rules(self) -> List[BehavioralRule]:
        return list(self._rules)

    def prerequisite_overrides(self) -> Mapping[str, List[str]]:
        return dict(self._overrides)

    def makeup_credits_per_enrollment(self) -> int:
        return self.settings.MAKEUP_CREDITS_PER_ENROLLMENT


# ---------------------------------------------------------
# Payments
# ---------------------------------------------------------
class PaymentGateway:
    def charge(self, owner_id: int, amount: Decimal, reference: str, purpose: str) -> str:
        """Capture `amount`; return a transaction id or raise PaymentError."""
        raise NotImplementedError


class NullPaymentGateway(PaymentGateway):
    """Approves everything. Used until a real processor is wired in."""

    def charge(self, owner_id: int, amount: Decimal, reference: str, purpose: str) -> str:
        if amount < 0:
            raise PaymentError(f"negative charge for {reference}")
        logger.info("Payment accepted: owner=%s amount=%s purpose=%s ref=%s", owner_id, amount, purpose, reference)
        return f"null-{reference}"


# ---------------------------------------------------------
# Notifications
# ---------------------------------------------------------
class Notifier:
    def send(self, kind: str, owner_id: int, payload: dict) -> None:
        raise NotImplementedError


class LoggingNotifier(Notifier):
    def send(self, kind: str, owner_id: int, payload: dict) -> None:
        logger.info("Notification %s -> owner %s: %s", kind, owner_id, payload)


# ---------------------------------------------------------
# Worker-side registry
# ---------------------------------------------------------
_registry = {
    "payments": NullPaymentGateway(),
    "notifier": LoggingNotifier(),
}


def configure(payments: Optional[PaymentGateway] = None, notifier: Optional[Notifier] = None) -> None:
    if payments is not None:
        _registry["payments"] = payments
    if notifier is not None:
        _registry["notifier"] = notifier


def get_payment_gateway() -> PaymentGateway:
    return _registry["payments"]


def get_notifier() -> Notifier:
    return _registry["notifier"]
