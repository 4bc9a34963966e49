from contextlib import contextmanager
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from core.exceptions import InvalidStateError, ServerError
from utils.logger import get_logger

logger = get_logger(__name__)

# SQLSTATE for unique_violation
UNIQUE_VIOLATION = "23505"


def is_unique_violation(error: IntegrityError) -> bool:
    orig = error.orig
    if getattr(orig, "pgcode", None) == UNIQUE_VIOLATION or getattr(orig, "sqlstate", None) == UNIQUE_VIOLATION:
        return True
    # SQLite only reports it in the message
    return "unique constraint" in str(orig).lower()


@contextmanager
def transaction(db: Session, operation: str):
    """
    Commit everything done inside the block, or nothing.

    Any exception rolls the session back. A unique constraint conflict (usually
    a concurrent duplicate) becomes InvalidStateError; every other storage
    error, NOT NULL and foreign key violations included, is logged with the
    original message and re-raised as ServerError.

    Usage:
        with transaction(db, "cancel order"):
            order.status = OrderStatus.CANCELLED
            db.add(listing)
    """
    try:
        yield
        db.commit()
    except IntegrityError as e:
        db.rollback()
        if not is_unique_violation(e):
            logger.error(
                f"{operation} failed: {str(e.orig)}",
                extra={"operation": operation, "error_type": type(e).__name__},
                exc_info=True
            )
            raise ServerError(f"Could not {operation}: {str(e.orig)}") from e
        logger.warning(
            f"{operation} conflicted with existing data",
            extra={"operation": operation, "error": str(e.orig)}
        )
        raise InvalidStateError(f"Could not {operation}: conflicting update") from e
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(
            f"{operation} failed: {str(e)}",
            extra={"operation": operation, "error_type": type(e).__name__},
            exc_info=True
        )
        raise ServerError(f"Could not {operation}: {str(e)}") from e
    except Exception:
        db.rollback()
        raise
