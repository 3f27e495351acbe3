from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from . import config
from .config import DATABASE_URL
import logging

logger = logging.getLogger(__name__)


def _masked_url(url: str) -> str:
    return url.replace(config.DATABASE_PASSWORD, "***") if config.DATABASE_PASSWORD else url


def build_engine(url: str = DATABASE_URL, echo: bool = config.DATABASE_ECHO, **options):
    """Creates an async engine; pool_pre_ping only applies to server databases."""
    options["echo"] = echo
    if not url.startswith("sqlite"):
        options["pool_pre_ping"] = True
    return create_async_engine(url, **options)


def build_session_factory(engine) -> async_sessionmaker:
    # Use async_sessionmaker for SQLAlchemy 2.0+
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


try:
    logger.info(f"Attempting to create engine with URL: {_masked_url(DATABASE_URL)}") # Hide password
    engine = build_engine()
    AsyncSessionFactory = build_session_factory(engine)
    logger.info("Async database engine and session factory created successfully.")
except Exception as e:
    logger.error(f"FATAL: Failed to create database engine or session factory: {e}")
    raise RuntimeError(f"Could not initialize database connection: {e}")

Base = declarative_base()

