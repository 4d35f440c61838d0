# backend/training/main.py
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import settings
from .db import Base, SessionLocal, engine as default_db_engine
from .engine import TrainingEngine
from .routers import enrollments, makeups, pets, series

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

origins = [
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]


def create_app(training_engine: Optional[TrainingEngine] = None, db_engine=None) -> FastAPI:
    training_engine = training_engine or TrainingEngine(SessionLocal)
    db_engine = db_engine or default_db_engine

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting training engine API...")
        # Create DB tables (DEV ONLY, use migrations in production)
        if settings.DEBUG:
            Base.metadata.create_all(bind=db_engine)
            added = training_engine.seed_catalog()
            if added:
                logger.info("Seeded course types: %s", ", ".join(added))
        yield
        logger.info("Shutting down training engine API...")

    app = FastAPI(title="Pet Training Scheduling API", lifespan=lifespan)
    app.state.engine = training_engine

    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # --------------------------------------------------------
    # ROUTES
    # --------------------------------------------------------
    app.include_router(series.catalog_router)
    app.include_router(series.router)
    app.include_router(pets.router)
    app.include_router(enrollments.router)
    app.include_router(makeups.router)

    @app.get("/")
    def root():
        return {"message": "Backend is running!"}

    return app


app = create_app()
