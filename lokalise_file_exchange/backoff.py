import asyncio
import math
from typing import Awaitable, Callable, TypeVar

from loguru import logger

from lokalise_file_exchange.api_client import ApiError
from lokalise_file_exchange.errors import LokaliseError
from lokalise_file_exchange.models import RetryParams

T = TypeVar("T")

RETRYABLE_CODES = frozenset({408, 429})


class BackoffExecutor:
    """Runs a remote operation, retrying rate-limit and timeout responses with exponential backoff"""

    def __init__(
        self,
        retry_params: RetryParams,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.retry_params = retry_params
        self.logger = logger
        self._sleep = sleep

    def compute_delay(self, attempt: int) -> int:
        """Returns the delay in milliseconds to wait after the given failed attempt (1-based)"""
        base = self.retry_params.initial_sleep_time * 2 ** (attempt - 1)
        jitter_range = math.floor(base * self.retry_params.jitter_ratio)
        jitter = math.floor(self.retry_params.rng() * jitter_range)
        return int(base) + jitter

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        max_attempts = self.retry_params.max_retries + 1

        for attempt in range(1, max_attempts + 1):
            try:
                return await operation()
            except ApiError as error:
                if error.code not in RETRYABLE_CODES:
                    raise LokaliseError(error.message, error.code, error.details) from error

                if attempt == max_attempts:
                    raise LokaliseError(
                        f"Maximum retries reached: {error.message or 'Unknown error'}",
                        error.code,
                        error.details,
                    ) from error

                delay = self.compute_delay(attempt)
                self.logger.debug(
                    f"Attempt {attempt}/{max_attempts} failed with {error.code}, "
                    f"retrying in {delay}ms"
                )
                await self._sleep(delay / 1000)

        raise LokaliseError("Unexpected error during operation.", 500)
