"""Optimistic commit loop with bounded retries."""

from typing import Callable, TypeVar
import logging
import time

from strata.config import StrataConfig
from strata.errors import CommitConflict, WriteConflict

logger = logging.getLogger(__name__)

T = TypeVar("T")


def commit_with_retry(
    attempt: Callable[[int], T],
    *,
    table: str,
    config: StrataConfig,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Run an optimistic read-plan-commit attempt until it commits.

    `attempt` receives the 1-based attempt number, must read a fresh snapshot
    itself, and raises CommitConflict when the store rejects its commit. Only
    CommitConflict is retried; any other error propagates immediately.

    Args:
        attempt: One read-plan-commit cycle
        table: Table name, for logging and the final error
        config: Supplies max_commit_retries and the backoff bounds
        sleep: Injected for tests

    Returns:
        Whatever the successful attempt returns

    Raises:
        WriteConflict: If every attempt conflicted
    """
    attempts = config.max_commit_retries + 1
    for number in range(1, attempts + 1):
        try:
            return attempt(number)
        except CommitConflict as e:
            if number >= attempts:
                logger.error(f"Commit to '{table}' failed after {number} attempts: {e}")
                raise WriteConflict(table, number) from e

            delay = min(
                config.retry_base_delay_seconds * (2 ** (number - 1)),
                config.retry_max_delay_seconds,
            )
            logger.warning(
                f"Commit conflict on '{table}' (attempt {number}/{attempts}), "
                f"retrying in {delay:.2f}s against a fresh snapshot"
            )
            if delay:
                sleep(delay)

    raise WriteConflict(table, attempts)


__all__ = ["commit_with_retry"]
