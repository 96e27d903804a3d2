"""Store readiness check."""

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from duet.errors import TransientError
from duet.logging import get_logger

logger = get_logger(__name__)


def check_store(db: Session) -> None:
    """Run a trivial query against the store.

    Raises:
        TransientError: If the store does not answer.
    """
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.warning("health_check_failed", error=str(e))
        raise TransientError(message="Store unavailable") from e
