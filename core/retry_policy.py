# core/retry_policy.py - Bounded retry with exponential backoff for AI calls

import asyncio
import logging
import random
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, TypeVar

from .errors import (AiBusy, AiParseError, AiRateLimitError, AiTransportError, GenerationError,
                     MalformedAiResponse, TransportFailure)

logger = logging.getLogger(__name__)

T = TypeVar("T")

RATE_LIMIT_MARKERS = ("429", "resource has been exhausted")


class RetryDecision(Enum):
    RETRY = "retry"
    FAIL = "fail"


def is_rate_limit_error(error: BaseException) -> bool:
    if isinstance(error, AiRateLimitError):
        return True
    message = str(error).lower()
    return any(marker in message for marker in RATE_LIMIT_MARKERS)


def to_generation_error(error: BaseException) -> GenerationError:
    """Map a failed AI call onto the engine's error taxonomy."""
    if isinstance(error, GenerationError):
        return error
    if is_rate_limit_error(error):
        # A rate-limit error only ends up here once retries are used up.
        return AiBusy()
    if isinstance(error, AiParseError):
        return MalformedAiResponse(str(error))
    if not isinstance(error, AiTransportError) and "json" in str(error).lower():
        return MalformedAiResponse(str(error))
    return TransportFailure(str(error) or error.__class__.__name__)


@dataclass
class RetryPolicy:
    """
    Up to ``max_attempts`` calls. Only rate-limit errors are retried, after
    ``backoff_base ** attempt`` seconds plus up to ``max_jitter`` seconds of
    random jitter. Any other error fails immediately.
    """
    max_attempts: int = 3
    backoff_base: float = 2.0
    max_jitter: float = 1.0
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    jitter: Callable[[float, float], float] = random.uniform

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    def classify(self, error: BaseException) -> RetryDecision:
        return RetryDecision.RETRY if is_rate_limit_error(error) else RetryDecision.FAIL

    def delay_for(self, attempt: int) -> float:
        """Backoff before the next try, ``attempt`` being the 1-based number of the failed attempt."""
        return self.backoff_base ** attempt + self.jitter(0, self.max_jitter)

    async def run(self, call: Callable[[], Awaitable[T]]) -> T:
        """
        Await ``call()`` under this policy.

        Raises AiBusy when rate limiting outlasts every attempt, MalformedAiResponse
        for parse-class failures and TransportFailure for anything else.
        """
        for attempt in range(1, self.max_attempts + 1):
            try:
                return await call()
            except Exception as e:
                logger.error(f"AI request failed (Attempt {attempt}/{self.max_attempts}): {e}")
                decision = self.classify(e)
                if decision is RetryDecision.RETRY and attempt < self.max_attempts:
                    delay = self.delay_for(attempt)
                    logger.warning(f"Rate limit detected. Retrying in {delay:.2f}s...")
                    await self.sleep(delay)
                    continue
                raise to_generation_error(e) from e

        # Unreachable: the loop either returns or raises.
        raise TransportFailure("Failed to generate website after multiple attempts.")
