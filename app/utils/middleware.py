from functools import wraps
from typing import Callable, AsyncGenerator
import asyncio
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import DBAPIError

from app.utils.errors import UpstreamUnavailable
from app.utils.logger_config import setup_logger

logger = setup_logger()


def with_db_retry(max_retries: int = 3, delay: int = 1):
    """
    Decorator for session dependencies with a retry mechanism.

    Only acquiring the session is retried; errors raised by the request
    handler while the session is in use are rolled back and re-raised.
    """

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(*args, **kwargs) -> AsyncGenerator[AsyncSession, None]:
            last_error = None
            for attempt in range(max_retries):
                session_gen = func(*args, **kwargs)
                try:
                    session = await session_gen.__anext__()
                    await session.connection()
                except DBAPIError as e:
                    last_error = e
                    await session_gen.aclose()
                    logger.warning(
                        f"Database connection attempt {attempt + 1} failed: {str(e)}"
                    )
                    if attempt < max_retries - 1:
                        await asyncio.sleep(delay * (2**attempt))
                    continue

                try:
                    yield session
                except Exception:
                    await session.rollback()
                    raise
                finally:
                    await session_gen.aclose()
                return

            raise UpstreamUnavailable(
                f"Database connection failed after {max_retries} attempts"
            ) from last_error

        return wrapper

    return decorator
