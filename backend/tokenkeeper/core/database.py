"""Engine, session factory and schema checks for the token store"""

from typing import Any, Dict, Generator
import logging

from sqlalchemy import create_engine, inspect
from sqlalchemy.engine import make_url
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from tokenkeeper.config import settings

logger = logging.getLogger(__name__)

INIT_MODES = ("migrate", "create_all", "off")


def _engine_options(database_url: str) -> Dict[str, Any]:
    url = make_url(database_url)
    options: Dict[str, Any] = {"echo": settings.DEBUG}
    if url.get_backend_name() == "sqlite":
        options["connect_args"] = {"check_same_thread": False}
        if url.database in (None, "", ":memory:"):
            # One shared connection, otherwise every checkout sees an empty database.
            options["poolclass"] = StaticPool
        return options

    options.update(
        pool_pre_ping=True,
        pool_size=settings.DATABASE_POOL_SIZE,
        max_overflow=settings.DATABASE_MAX_OVERFLOW,
        pool_timeout=30,
        pool_recycle=3600,
    )
    return options


_database_url = settings.get_database_url()
engine = create_engine(_database_url, **_engine_options(_database_url))

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()

# Models register on Base.metadata at import time.
from tokenkeeper import models  # noqa: E402,F401


def get_db() -> Generator[Session, None, None]:
    """
    Dependency for getting database session

    Yields:
        Session: Database session
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db() -> None:
    """
    Prepare or verify the schema according to DB_INIT_MODE.

      - migrate: the alembic_version table must exist (schema owned by migrations)
      - create_all: create missing tables from the models, for local use
      - off: do nothing

    Raises:
        RuntimeError: Unknown mode, or migrations have not been applied
    """
    mode = settings.DB_INIT_MODE.lower().strip()
    if mode not in INIT_MODES:
        raise RuntimeError(f"Unknown DB_INIT_MODE: {settings.DB_INIT_MODE}")

    if mode == "off":
        logger.info("Schema check skipped (DB_INIT_MODE=off)")
    elif mode == "create_all":
        Base.metadata.create_all(bind=engine)
        logger.warning("Token tables created with create_all; use migrations outside local development")
    else:
        with engine.connect() as conn:
            migrated = inspect(conn).has_table("alembic_version")
        if not migrated and settings.DB_REQUIRE_HEAD:
            raise RuntimeError("Migration table missing. Run migrations before starting the API.")
        logger.info("Migration metadata %s", "detected" if migrated else "not found")
