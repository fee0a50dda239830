from contextlib import contextmanager
from sqlalchemy import create_engine
from sqlalchemy.exc import DBAPIError, DisconnectionError, OperationalError, TimeoutError as PoolTimeoutError
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from typing import Generator
import logging
import redis
from .config import settings
from .exceptions import Unavailable

logger = logging.getLogger(__name__)


def create_db_engine(database_url: str):
    """Create an engine with pool settings suited to the backend."""
    if database_url.startswith("sqlite"):
        # SQLite serializes writers; wait on the file lock instead of failing fast
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False, "timeout": 30},
        )
    return create_engine(
        database_url,
        pool_size=5,
        max_overflow=10,
        pool_timeout=30,
        pool_recycle=1800,  # Recycle connections after 30 minutes
        pool_pre_ping=True,
    )


engine = create_db_engine(settings.get_database_url)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()

# Connections are opened lazily on first command
redis_client = redis.from_url(
    settings.REDIS_URL,
    decode_responses=True,
    socket_connect_timeout=settings.REDIS_SOCKET_CONNECT_TIMEOUT,
    socket_timeout=settings.REDIS_SOCKET_TIMEOUT,
)

# Database dependency
def get_db() -> Generator[Session, None, None]:
    """Get database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

# Storage failures
STORAGE_ERRORS = (DBAPIError, PoolTimeoutError, DisconnectionError)

def is_storage_outage(exc: Exception) -> bool:
    """True when the database could not be reached or answer in time."""
    if isinstance(exc, (OperationalError, PoolTimeoutError, DisconnectionError)):
        return True
    return isinstance(exc, DBAPIError) and exc.connection_invalidated

@contextmanager
def storage_guard(db: Session):
    """Roll back and raise Unavailable on lock timeouts, pool exhaustion and lost connections.

    Other database errors (integrity violations, bad SQL) propagate unchanged.
    """
    try:
        yield
    except STORAGE_ERRORS as e:
        if not is_storage_outage(e):
            raise
        db.rollback()
        logger.error(f"Database unavailable: {str(e)}")
        raise Unavailable() from e

# Redis dependency
def get_redis():
    """Get Redis client."""
    return redis_client

# Database initialization
def init_db(bind=None):
    """Create tables and seed the default slot catalog."""
    from ..models import appointment, doctor, time_slot  # noqa: F401 register mappers
    from ..services.slot_catalog import seed_default_slots

    bind = bind or engine
    Base.metadata.create_all(bind=bind)

    db = Session(bind=bind)
    try:
        seed_default_slots(db)
    finally:
        db.close()
