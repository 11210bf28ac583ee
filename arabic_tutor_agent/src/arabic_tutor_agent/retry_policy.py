"""
Bounded Retry Policy

Shared by the chat and transcription gateways. Retries network failures,
timeouts and provider 5xx responses with exponential backoff; surfaces
provider 4xx responses immediately.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

import openai

from arabic_tutor_agent.errors import TransientServiceError, UpstreamClientError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryPolicy:
    """
    Retry an async provider call a bounded number of times.

    Delay before attempt n+1 is base_delay * 2**(n-1), capped at max_delay.
    A timeout is one deadline for the whole call: attempts and backoff both
    draw from it, and a backoff that would overrun it ends the retries.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 0.5,
        max_delay: float = 4.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._sleep = sleep

    def delay_for(self, attempt: int) -> float:
        return min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)

    @staticmethod
    def is_client_error(error: BaseException) -> bool:
        """True for provider responses in the 4xx range."""
        if not isinstance(error, openai.APIStatusError):
            return False
        return 400 <= error.status_code < 500

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        description: str,
        timeout: Optional[float] = None,
    ) -> T:
        """
        Execute operation under the policy.

        Args:
            operation: Zero-argument coroutine factory (called once per attempt)
            description: Short label used in logs and error messages
            timeout: Overall deadline in seconds, shared by every attempt and backoff

        Raises:
            UpstreamClientError: provider rejected the request (4xx)
            TransientServiceError: the deadline passed or every attempt failed
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout if timeout is not None else None
        last_error: Optional[BaseException] = None
        attempt = 0

        while attempt < self.max_attempts:
            attempt += 1
            try:
                if deadline is None:
                    return await operation()
                remaining = max(deadline - loop.time(), 0.0)
                return await asyncio.wait_for(operation(), timeout=remaining)
            except asyncio.TimeoutError as e:
                logger.warning(f"⚠️ [Retry] {description} exceeded its {timeout}s deadline (attempt {attempt}/{self.max_attempts})")
                raise TransientServiceError(
                    f"{description} timed out after {timeout}s ({attempt} {self._attempts(attempt)})"
                ) from e
            except openai.APIError as e:
                if self.is_client_error(e):
                    logger.error(f"❌ [Retry] {description} rejected by provider ({e.status_code}): {e.message}")
                    raise UpstreamClientError(
                        f"{description} rejected by provider ({e.status_code}): {e.message}"
                    ) from e
                last_error = e
                logger.warning(f"⚠️ [Retry] {description} failed (attempt {attempt}/{self.max_attempts}): {e}")

            if attempt < self.max_attempts:
                delay = self.delay_for(attempt)
                if deadline is not None and loop.time() + delay >= deadline:
                    logger.warning(f"⚠️ [Retry] {description} has no time left for another attempt")
                    break
                await self._sleep(delay)

        detail = str(last_error) or type(last_error).__name__
        raise TransientServiceError(
            f"{description} failed after {attempt} {self._attempts(attempt)}: {detail}"
        ) from last_error

    @staticmethod
    def _attempts(count: int) -> str:
        return "attempt" if count == 1 else "attempts"
