"""
Transaction Helper Service

Commit/rollback handling for service operations:
- Commit on success, rollback on any exception
- Retry only for connection-level database errors
- Domain errors propagate after rollback without retry
"""

from functools import wraps
from typing import Callable
import logging
import time
from sqlalchemy.exc import OperationalError, DisconnectionError
from app import db

logger = logging.getLogger(__name__)


class TransactionHelper:
    """Helper class for managing database transactions safely"""

    @staticmethod
    def with_transaction(func: Callable) -> Callable:
        """
        Decorator that wraps a function in a database transaction.
        Commits when the function returns, rolls back when it raises.

        Usage:
            @TransactionHelper.with_transaction
            def release(hold_id):
                # Your database operations here
                pass
        """
        return TransactionHelper.with_connection_retry()(TransactionHelper._committing(func))

    @staticmethod
    def _committing(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs):
            try:
                result = func(*args, **kwargs)
                db.session.commit()
                return result
            except Exception:
                db.session.rollback()
                raise
        return wrapper

    @staticmethod
    def with_connection_retry(max_retries: int = 3, backoff: float = 0.5):
        """
        Decorator for operations that need connection retry logic with exponential backoff.

        Args:
            max_retries: Maximum number of retry attempts
            backoff: Initial backoff delay in seconds
        """
        def decorator(func: Callable) -> Callable:
            @wraps(func)
            def wrapper(*args, **kwargs):
                for attempt in range(max_retries):
                    try:
                        return func(*args, **kwargs)
                    except (DisconnectionError, OperationalError) as e:
                        if attempt < max_retries - 1:
                            sleep_time = backoff * (2 ** attempt)  # Exponential backoff
                            logger.warning(f"Database connection error in {func.__name__} (attempt {attempt + 1}/{max_retries}): {str(e)}. Retrying in {sleep_time}s...")
                            time.sleep(sleep_time)
                            db.session.rollback()
                            continue
                        logger.error(f"Max retries reached for {func.__name__}: {str(e)}")
                        raise
            return wrapper
        return decorator
