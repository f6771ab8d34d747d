"""Bounded retry for read-only RPC calls.

Only idempotent reads go through here. State-changing transactions are
never resent automatically: a lost receipt does not mean the transaction
was not mined.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, TypeVar

import requests

logger = logging.getLogger(__name__)

T = TypeVar("T")


#: Network level errors worth another attempt
TRANSIENT_ERRORS: tuple[type[Exception], ...] = (
    requests.exceptions.ConnectionError,
    requests.exceptions.Timeout,
    ConnectionError,
    TimeoutError,
)


@dataclass(slots=True)
class RetryConfig:
    """How hard we try a flaky node before giving up.

    Example:

    .. code-block:: python

        # Production (default)
        config = RetryConfig()

        # Fast-fail for tests
        config = RetryConfig.create_test_config()
    """

    #: Total attempts, including the first one
    max_attempts: int = 4

    #: Initial delay in seconds between attempts
    initial_delay: float = 1.0

    #: Maximum delay cap in seconds
    max_delay: float = 15.0

    #: Multiplier applied to delay after each failed attempt
    backoff_multiplier: float = 2.0

    @classmethod
    def create_test_config(cls) -> "RetryConfig":
        return cls(max_attempts=2, initial_delay=0.01, max_delay=0.01)


#: Default production retry configuration
DEFAULT_RETRY_CONFIG = RetryConfig()


def call_with_retry(
    func: Callable[[], T],
    description: str,
    retry_config: RetryConfig | None = None,
) -> T:
    """Run a read with retry and exponential backoff on transient network errors.

    Contract reverts and other non-network errors are raised immediately.

    :param func:
        Zero-argument callable, e.g. ``manager.functions.vaults(token).call``

    :param description:
        Human readable name for the logs

    :return:
        Whatever ``func`` returns
    """
    if retry_config is None:
        retry_config = DEFAULT_RETRY_CONFIG

    delay = retry_config.initial_delay

    for attempt in range(1, retry_config.max_attempts + 1):
        try:
            return func()
        except TRANSIENT_ERRORS as e:
            if attempt == retry_config.max_attempts:
                logger.warning("%s failed after %d attempts: %s", description, attempt, e)
                raise
            logger.warning(
                "%s attempt %d/%d failed: %s. Retrying in %.1fs",
                description,
                attempt,
                retry_config.max_attempts,
                e,
                delay,
            )
            time.sleep(delay)
            delay = min(delay * retry_config.backoff_multiplier, retry_config.max_delay)

    raise AssertionError("Unreachable")
