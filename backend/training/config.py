# backend/training/config.py
from decimal import Decimal
from typing import Literal

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # DB URL used by SQLAlchemy. Tests pass their own engine.
    DATABASE_URL: str = "postgresql+psycopg2://postgres:postgres@db:5432/training"

    # Redis for Celery (waitlist sweep + side effects)
    REDIS_URL: str = "redis://redis:6379/0"
    CELERY_TASK_ALWAYS_EAGER: bool = False

    # App options
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"

    # Waitlist
    WAITLIST_CLAIM_HOURS: int = 24
    WAITLIST_SWEEP_INTERVAL_SECONDS: int = 300

    # Makeup credits and pricing
    MAKEUP_CREDITS_PER_ENROLLMENT: int = 1
    MAKEUP_CREDIT_VALIDITY_DAYS: int = 30
    MAKEUP_PRICING_KIND: Literal["fixed", "percentage", "per_session"] = "fixed"
    MAKEUP_FIXED_PRICE: Decimal = Decimal("45")
    MAKEUP_PERCENTAGE_OF_SERIES: Decimal = Decimal("0.15")
    MAKEUP_PER_SESSION_PRICE: Decimal = Decimal("50")

    # Payment / notification delivery
    SIDE_EFFECT_MAX_RETRIES: int = 5

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"

settings = Settings()
