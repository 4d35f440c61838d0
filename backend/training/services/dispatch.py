# backend/training/services/dispatch.py
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable, List, Optional

logger = logging.getLogger(__name__)


@dataclass
class SideEffect:
    """Something to deliver after a state transition has committed."""
    kind: str                 # "notification" | "payment"
    owner_id: int
    topic: str                # notification kind or payment purpose
    payload: dict = field(default_factory=dict)
    amount: Optional[Decimal] = None
    reference: Optional[str] = None


def notification(topic: str, owner_id: int, **payload) -> SideEffect:
    return SideEffect(kind="notification", owner_id=owner_id, topic=topic, payload=payload)


def payment(purpose: str, owner_id: int, amount: Decimal, reference: str) -> SideEffect:
    return SideEffect(kind="payment", owner_id=owner_id, topic=purpose, amount=amount, reference=reference)


class SideEffectDispatcher:
    """
    Hands side effects to the background worker. Delivery failures never
    propagate: they are logged and returned as warning strings so the caller
    can surface them next to an already-committed result.
    """

    def send(self, effect: SideEffect) -> None:
        raise NotImplementedError

    def dispatch(self, effects: Iterable[SideEffect]) -> List[str]:
        warnings = []
        for effect in effects:
            try:
                self.send(effect)
            except Exception as e:
                logger.warning("Could not dispatch %s/%s for owner %s: %s", effect.kind, effect.topic, effect.owner_id, e)
                warnings.append(f"{effect.kind} '{effect.topic}' was not dispatched and will need a retry: {e}")
        return warnings


class CeleryDispatcher(SideEffectDispatcher):
    def send(self, effect: SideEffect) -> None:
        from ..tasks import capture_payment, deliver_notification

        if effect.kind == "payment":
            capture_payment.delay(effect.owner_id, str(effect.amount), effect.reference, effect.topic)
        else:
            deliver_notification.delay(effect.topic, effect.owner_id, effect.payload)
