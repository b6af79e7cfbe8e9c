import logging
from typing import Callable

from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from app.core.config import DATABASE_URL

logger = logging.getLogger(__name__)

connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(DATABASE_URL, connect_args=connect_args, pool_pre_ping=True)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def best_effort(db: Session, description: str, fn: Callable[..., object], *args, **kwargs) -> bool:
    """Run a secondary write in its own commit.

    Call it after the primary mutation is committed: a failure here rolls back
    only this write and is logged, never raised.
    """
    try:
        fn(*args, **kwargs)
        db.commit()
        return True
    except SQLAlchemyError:
        db.rollback()
        logger.warning("best-effort write failed: %s", description, exc_info=True)
        return False
