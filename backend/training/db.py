# backend/training/db.py
from urllib.parse import urlparse, parse_qs

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base

from .config import settings

DATABASE_URL = settings.DATABASE_URL


def _should_use_ssl(url: str) -> bool:
    parsed = urlparse(url)
    q = parse_qs(parsed.query or "")
    if "sslmode" in q and any(v and v[0].lower() == "require" for v in q.values()):
        return True
    host = (parsed.hostname or "").lower()
    return "supabase.co" in host or "neon.tech" in host or "railway" in host


def build_engine(url: str = DATABASE_URL, echo: bool = False):
    """Create an engine for `url`; SQLite gets the thread-sharing flag."""
    connect_args = {}
    if url.startswith("sqlite"):
        connect_args = {"check_same_thread": False, "timeout": 30}
    elif _should_use_ssl(url):
        connect_args = {"sslmode": "require"}

    # ALWAYS pass a dict (empty or populated), never None
    return create_engine(url, echo=echo, future=True, connect_args=connect_args)


def build_sessionmaker(bind):
    return sessionmaker(
        bind=bind,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
        future=True,
    )


engine = build_engine(DATABASE_URL, echo=settings.DEBUG)
SessionLocal = build_sessionmaker(engine)

Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
