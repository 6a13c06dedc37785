import functools

import structlog
from sqlalchemy import create_engine, event
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from .config import settings
from .errors import StoreUnavailable

logger = structlog.get_logger("labbook.db")

connect_args = {}
if settings.DATABASE_URL.startswith("sqlite"):
    connect_args = {"check_same_thread": False}

engine = create_engine(settings.DATABASE_URL, echo=False, connect_args=connect_args)

# WAL lets readers proceed while a booking write is committing.
if settings.DATABASE_URL.startswith("sqlite"):
    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.close()

SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)


class Base(DeclarativeBase):
    pass


def _find_session(args, kwargs) -> Session | None:
    db = kwargs.get("db")
    if isinstance(db, Session):
        return db
    for arg in args:
        if isinstance(arg, Session):
            return arg
    return None


def guard_store(func):
    """Turn connectivity failures of the store into StoreUnavailable.

    Integrity and programming errors are left alone: they are bugs or
    constraint violations, not an unreachable store.
    """

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except (OperationalError, InterfaceError) as exc:
            db = _find_session(args, kwargs)
            if db is not None:
                db.rollback()
            logger.error("store_unavailable", operation=func.__name__, error=str(exc))
            raise StoreUnavailable("Booking store is unavailable") from exc

    return wrapper


def init_db():
    from . import models  # noqa: F401

    Base.metadata.create_all(bind=engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
