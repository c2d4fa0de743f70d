from contextlib import contextmanager
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ..core.exceptions import InvalidStateError, StoreUnavailableError

logger = logging.getLogger(__name__)


@contextmanager
def translate_store_errors(db: Session, action: str):
    """Roll back and convert SQLAlchemy failures into domain errors."""
    try:
        yield
    except StaleDataError:
        db.rollback()
        logger.warning(f"Concurrent modification detected during {action}")
        raise InvalidStateError(
            "Appointment was modified by another request. Please retry."
        )
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception(f"Store failure during {action}")
        raise StoreUnavailableError() from exc
