"""Database engine, session factory and write-transaction helper."""
import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from app.core.config import settings
from app.core.errors import ConcurrentModification, RiskEngineError, StorageFailure

logger = logging.getLogger(__name__)


def _connect_args(url: str) -> dict:
    if url.startswith("sqlite"):
        return {"check_same_thread": False}
    if url.startswith("postgresql"):
        # Bound every store round trip; a timeout surfaces as StorageFailure
        return {"options": f"-c statement_timeout={settings.DB_STATEMENT_TIMEOUT_MS}"}
    return {}


engine = create_engine(
    settings.DATABASE_URL,
    connect_args=_connect_args(settings.DATABASE_URL),
    pool_pre_ping=True,
)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    """Yield a database session for the duration of a request."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def write_transaction(db: Session, description: str) -> Iterator[Session]:
    """
    Commit the enclosed writes as one unit or roll all of them back.

    Store errors are translated into engine errors: a stale versioned row
    or a uniqueness race becomes ``ConcurrentModification``, anything else
    ``StorageFailure``. Engine errors raised inside pass through after the
    rollback.
    """
    try:
        yield db
        db.commit()
    except RiskEngineError:
        db.rollback()
        raise
    except StaleDataError as exc:
        db.rollback()
        raise ConcurrentModification(
            f"{description}: the row was changed by another request; reload and retry"
        ) from exc
    except IntegrityError as exc:
        db.rollback()
        logger.warning("%s: integrity conflict: %s", description, exc.orig)
        raise ConcurrentModification(f"{description}: conflicting concurrent write") from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("%s failed: %s", description, exc)
        raise StorageFailure(f"{description} failed: the store did not acknowledge the write") from exc
    except Exception:
        db.rollback()
        raise
