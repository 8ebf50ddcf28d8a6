"""
Retry Manager - Exponential Backoff for Transient Failures

Only NetworkError is considered transient. Auth, provider and validation
errors are permanent and surface on the first attempt.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable

from mailboard.core.errors import NetworkError

logger = logging.getLogger(__name__)


class RetryManager:
    """
    Retries an async operation with exponential backoff (1s, 2s, 4s...).

    Used around connector.connect(); deletion batches are never retried.
    """

    def __init__(self, max_retries: int = 2, base_delay: float = 1.0):
        """
        Args:
            max_retries: Maximum number of retry attempts after the first call
            base_delay: Base delay in seconds for exponential backoff
        """
        self.max_retries = max_retries
        self.base_delay = base_delay

    async def run(self,
                  operation: Callable[[], Awaitable[Any]],
                  operation_name: str) -> Any:
        """
        Await `operation()` until it succeeds or fails permanently.

        Raises:
            The last NetworkError after max_retries, or any non-transient
            error immediately.
        """
        for attempt in range(self.max_retries + 1):
            if attempt > 0:
                delay = self.calculate_delay(attempt - 1)
                logger.info(f"Retry attempt {attempt}/{self.max_retries} for {operation_name} "
                            f"after {delay}s delay...")
                await asyncio.sleep(delay)
            try:
                result = await operation()
            except NetworkError as e:
                logger.warning(f"{operation_name} failed on attempt {attempt + 1}: {e}")
                if attempt == self.max_retries:
                    raise
                continue

            if attempt > 0:
                logger.info(f"{operation_name} succeeded on attempt {attempt + 1}")
            return result

    def calculate_delay(self, attempt: int) -> float:
        """Delay in seconds for the given (0-indexed) retry."""
        return (2 ** attempt) * self.base_delay
