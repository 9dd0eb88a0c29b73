# Notus: aggregate nearby air quality and weather sensor readings
# Copyright (C) 2025 Ruaraidh Dobson, South London Scientific

# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU General Public License for more details.

# You should have received a copy of the GNU General Public License
# along with this program.  If not, see <https://www.gnu.org/licenses/>.

"""
Retry and logging decorators.

Provider adapters wrap their HTTP calls in `retry_on_network_error`; the
scheduler entry points are wrapped in `with_logging` so every run leaves a
start and finish line (with its duration) in the log.
"""

import logging
import time
from functools import wraps
from typing import Callable, TypeVar

import requests
from tenacity import (
    after_log,
    before_sleep_log,
    retry,
    retry_if_exception,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

F = TypeVar("F", bound=Callable)

logger = logging.getLogger(__name__)

# Transport failures worth another attempt
TRANSIENT_ERRORS = (requests.exceptions.ConnectionError, requests.exceptions.Timeout)


def _is_server_error(exception: BaseException) -> bool:
    """True for HTTP 5xx. A 4xx means the request itself is wrong."""
    if isinstance(exception, requests.exceptions.HTTPError):
        if exception.response is not None:
            return 500 <= exception.response.status_code < 600
    return False


def with_retry(
    max_attempts: int = 3,
    min_wait: float = 1.0,
    max_wait: float = 10.0,
    multiplier: float = 2.0,
) -> Callable[[F], F]:
    """
    Retry a network call with exponential backoff.

    Connection errors, timeouts and HTTP 5xx responses are retried; anything
    else (including ProviderConfigurationError and 4xx responses) goes
    straight to the caller. Once `max_attempts` is spent the last exception
    is re-raised unchanged, so adapters can catch the usual requests errors.

    Args:
        max_attempts: Total attempts, including the first
        min_wait: Lower bound on the wait between attempts, in seconds
        max_wait: Upper bound on the wait between attempts, in seconds
        multiplier: Backoff multiplier

    Example:
        >>> @with_retry(max_attempts=5)
        ... def fetch_page(url):
        ...     response = requests.get(url, timeout=30)
        ...     response.raise_for_status()
        ...     return response.json()
    """

    def decorator(func: F) -> F:
        @retry(
            retry=(
                retry_if_exception_type(TRANSIENT_ERRORS)
                | retry_if_exception(_is_server_error)
            ),
            stop=stop_after_attempt(max_attempts),
            wait=wait_exponential(multiplier=multiplier, min=min_wait, max=max_wait),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            after=after_log(logger, logging.DEBUG),
            reraise=True,
        )
        @wraps(func)
        def wrapper(*args, **kwargs):
            return func(*args, **kwargs)

        return wrapper

    return decorator


def with_logging(logger_name: str | None = None) -> Callable[[F], F]:
    """
    Log when a run starts and finishes, and how long it took.

    Failures are logged with their traceback at ERROR and re-raised.
    Arguments are never logged; only their count and keyword names.

    Args:
        logger_name: Logger to write to (defaults to the function's module)
    """

    def decorator(func: F) -> F:
        func_logger = logging.getLogger(logger_name or func.__module__)

        @wraps(func)
        def wrapper(*args, **kwargs):
            func_logger.info(
                f"Starting {func.__name__}",
                extra={
                    "function": func.__name__,
                    "args_count": len(args),
                    "kwargs_keys": list(kwargs.keys()),
                },
            )
            started = time.perf_counter()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                func_logger.error(
                    f"{func.__name__} failed after "
                    f"{time.perf_counter() - started:.1f}s: {e}",
                    extra={
                        "function": func.__name__,
                        "error_type": type(e).__name__,
                    },
                    exc_info=True,
                )
                raise

            elapsed = time.perf_counter() - started
            func_logger.info(
                f"Finished {func.__name__} in {elapsed:.1f}s",
                extra={"function": func.__name__, "elapsed_seconds": elapsed},
            )
            return result

        return wrapper

    return decorator


# Retry policy for every provider HTTP call
retry_on_network_error = with_retry()
