# Overview: Retry helpers for transient repository failures.

from __future__ import annotations

import logging
import time

from ..config import get_setting
from .errors import RepositoryUnavailableError

logger = logging.getLogger(__name__)


def run_with_retry(
    func,
    *,
    attempts: int = 3,
    backoff_base: float = 0.1,
    retry_on: tuple[type[BaseException], ...] = (RepositoryUnavailableError,),
):
    """
    Execute a repository operation with retry on transient failures.

    Only `retry_on` errors are retried, with exponential backoff. Business
    rule violations propagate on the first raise.
    """
    if attempts < 1:
        raise ValueError("attempts must be >= 1")

    for attempt in range(attempts):
        try:
            return func()
        except retry_on as exc:
            if attempt >= attempts - 1:
                raise
            delay = backoff_base * (2 ** attempt)
            logger.warning(
                "Transient repository failure (attempt %d/%d), retrying in %.2fs: %s",
                attempt + 1, attempts, delay, exc,
            )
            time.sleep(delay)


def run_with_configured_retry(func):
    """run_with_retry using REPOSITORY_RETRY_ATTEMPTS / REPOSITORY_RETRY_BACKOFF."""
    return run_with_retry(
        func,
        attempts=int(get_setting("REPOSITORY_RETRY_ATTEMPTS", 3)),
        backoff_base=float(get_setting("REPOSITORY_RETRY_BACKOFF", 0.1)),
    )
