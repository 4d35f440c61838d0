# backend/training/exceptions.py


class TrainingError(Exception):
    """Base class for every error the engine raises."""


class NotFoundError(TrainingError):
    def __init__(self, entity: str, key):
        super().__init__(f"{entity} not found: {key!r}")
        self.entity = entity
        self.key = key


class CatalogError(TrainingError):
    pass


class SeriesConfigError(TrainingError):
    pass


class SeriesAlreadyStartedError(SeriesConfigError):
    """Sessions cannot be regenerated once the series has started."""


class InvalidTransitionError(TrainingError):
    def __init__(self, entity: str, current: str, target: str):
        super().__init__(f"{entity} cannot move from {current!r} to {target!r}")
        self.current = current
        self.target = target


class AttendanceError(TrainingError):
    pass


class OfferExpiredError(TrainingError):
    pass


class MakeupError(TrainingError):
    pass


class NotMissedError(MakeupError):
    pass


class DuplicateMakeupError(MakeupError):
    pass


class NoCreditsError(MakeupError):
    pass


class PaymentError(TrainingError):
    """Raised by payment collaborators; always safe to retry."""


class IneligibleError(TrainingError):
    def __init__(self, pet_id: int, issues):
        super().__init__(f"pet {pet_id} is not eligible: " + "; ".join(i.message for i in issues))
        self.issues = issues
