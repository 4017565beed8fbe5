import functools

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base

from campus_library.core.config import settings

connect_args = {"check_same_thread": False} if settings.database_url.startswith("sqlite") else {}
engine = create_engine(settings.database_url, connect_args=connect_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def rollback_on_error(func):
    """Roll the session back when the wrapped operation raises, releasing row locks."""
    @functools.wraps(func)
    def wrapper(db, *args, **kwargs):
        try:
            return func(db, *args, **kwargs)
        except Exception:
            db.rollback()
            raise
    return wrapper
