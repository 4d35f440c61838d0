# backend/training/deps.py
from contextlib import contextmanager

from fastapi import HTTPException, Request

from .engine import TrainingEngine
from .exceptions import (
    AttendanceError,
    CatalogError,
    IneligibleError,
    InvalidTransitionError,
    MakeupError,
    NotFoundError,
    OfferExpiredError,
    PaymentError,
    SeriesAlreadyStartedError,
    SeriesConfigError,
    TrainingError,
)


def get_engine(request: Request) -> TrainingEngine:
    return request.app.state.engine


@contextmanager
def domain_errors():
    """Turn engine exceptions into HTTP errors."""
    try:
        yield
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except (SeriesAlreadyStartedError, InvalidTransitionError, OfferExpiredError, AttendanceError, MakeupError) as e:
        raise HTTPException(status_code=409, detail=str(e))
    except IneligibleError as e:
        raise HTTPException(status_code=422, detail=[i.model_dump() for i in e.issues])
    except PaymentError as e:
        raise HTTPException(status_code=402, detail={"message": str(e), "retriable": True})
    except (SeriesConfigError, CatalogError) as e:
        raise HTTPException(status_code=400, detail=str(e))
    except TrainingError as e:
        raise HTTPException(status_code=400, detail=str(e))
