from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.orm import Session, sessionmaker
import os
from dotenv import load_dotenv

from .core.exceptions import StoreUnavailableError
from .models.base import Base

load_dotenv()

# Database configuration
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./authgate.db")

# Create engine
engine = create_engine(
    DATABASE_URL,
    echo=os.getenv("DATABASE_ECHO", "false").lower() == "true",
    connect_args={"check_same_thread": False} if "sqlite" in DATABASE_URL else {}
)

# Create session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


@contextmanager
def session_scope(session_factory: sessionmaker, store: str = "database") -> Iterator[Session]:
    """Run one unit of work: commit on success, roll back on error.

    Driver-level failures are re-raised as ``StoreUnavailableError`` so callers
    see a single infrastructure error category.
    """
    session = session_factory()
    try:
        yield session
        session.commit()
    except (OperationalError, InterfaceError) as exc:
        session.rollback()
        raise StoreUnavailableError(store) from exc
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def create_tables(bind=None):
    """Create all database tables"""
    from . import models  # noqa: F401  register mappers

    Base.metadata.create_all(bind=bind or engine)
