"""
Retry policy — bounded retries with exponential backoff and jitter.

Used for every call to the provider. Only transient failures
(throttling, network hiccups) are retried; anything else is returned or
raised to the caller immediately.

    delay(n) = min(base_delay * 2**(n-1), max_delay) + uniform(0, 0.3 * that)
"""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass, field
from typing import Callable, TypeVar

from stackrecon.core.errors import TransientProviderError
from stackrecon.core.models.receipt import DeployReceipt

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryPolicy:
    """How hard to retry transient provider failures.

    Args:
        max_attempts: Total attempts, including the first one.
        base_delay: Delay before the first retry, in seconds.
        max_delay: Upper bound for a single delay (before jitter).
        jitter: Fraction of the delay added at random.
        sleep: Sleep function (injectable for tests).
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    jitter: float = 0.3
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after failed attempt number ``attempt`` (1-based)."""
        delay = min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)
        return delay + random.uniform(0, delay * self.jitter)

    def call(self, label: str, fn: Callable[[], T]) -> T:
        """Call ``fn``, retrying on TransientProviderError.

        Raises:
            TransientProviderError: The last error, once attempts are exhausted.
        """
        attempt = 1
        while True:
            try:
                return fn()
            except TransientProviderError as e:
                if attempt >= self.max_attempts:
                    logger.warning("%s: giving up after %d attempts: %s", label, attempt, e)
                    raise
                delay = self.delay_for(attempt)
                logger.info(
                    "%s: transient error (attempt %d/%d), retrying in %.1fs: %s",
                    label,
                    attempt,
                    self.max_attempts,
                    delay,
                    e,
                )
                self.sleep(delay)
                attempt += 1

    def deploy(self, label: str, fn: Callable[[], DeployReceipt]) -> tuple[DeployReceipt, int]:
        """Call a receipt-returning deploy, retrying transient failures.

        Returns:
            (last receipt, attempts used).
        """
        attempt = 1
        while True:
            receipt = fn()
            if not receipt.transient or attempt >= self.max_attempts:
                if receipt.transient:
                    logger.warning(
                        "%s: giving up after %d attempts: %s", label, attempt, receipt.error
                    )
                return receipt, attempt
            delay = self.delay_for(attempt)
            logger.info(
                "%s: transient failure (attempt %d/%d), retrying in %.1fs: %s",
                label,
                attempt,
                self.max_attempts,
                delay,
                receipt.error,
            )
            self.sleep(delay)
            attempt += 1
