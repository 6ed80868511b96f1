"""
Retry capability shared by every external call (embedding, generation).

Transient failures are retried with exponential backoff
(``base_delay * 2 ** (attempt - 1)``, capped at ``max_delay``) up to a fixed
number of attempts; everything else is raised immediately.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from ..observability.logging import get_logger
from .errors import EmbeddingError, GenerationError

logger = get_logger(__name__)

T = TypeVar("T")


def is_transient_error(exc: BaseException) -> bool:
    """Rate limits, server errors, timeouts and dropped connections are worth retrying."""
    if isinstance(exc, httpx.HTTPStatusError):
        code = exc.response.status_code
        return code == 429 or 500 <= code < 600
    if isinstance(exc, (httpx.TransportError, TimeoutError)):
        return True
    if isinstance(exc, (EmbeddingError, GenerationError)):
        return exc.transient
    return False


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt cap plus exponential backoff for one class of external call."""

    max_attempts: int = 4
    base_delay: float = 0.3
    max_delay: float = 10.0

    @classmethod
    def from_endpoint(cls, endpoint: Any) -> "RetryPolicy":
        """Build a policy from a ``ModelEndpoint``."""
        return cls(
            max_attempts=endpoint.max_attempts,
            base_delay=endpoint.backoff_base,
            max_delay=endpoint.backoff_max,
        )

    async def call(
        self,
        operation: Callable[..., Awaitable[T]],
        *args: Any,
        op_name: str = "external_call",
        is_retryable: Callable[[BaseException], bool] = is_transient_error,
        **kwargs: Any,
    ) -> T:
        """Run ``operation(*args, **kwargs)``, retrying transient failures."""

        def _before_sleep(state: RetryCallState) -> None:
            exc = state.outcome.exception() if state.outcome else None
            logger.warning(
                f"{op_name} failed, retrying",
                attempt=state.attempt_number,
                max_attempts=self.max_attempts,
                wait_s=round(state.next_action.sleep, 3) if state.next_action else 0,
                error=type(exc).__name__ if exc else "-",
            )

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.base_delay, max=self.max_delay),
            retry=retry_if_exception(is_retryable),
            before_sleep=_before_sleep,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                result = await operation(*args, **kwargs)
        return result
