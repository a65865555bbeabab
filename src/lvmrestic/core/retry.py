# Author: PB & Claude
# Maintainer: PB
# Original date: 2025.06.15
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/lvmrestic/core/retry.py

"""
Retry with a fixed delay for operations that touch shared system state.

Used for snapshot removal (release and the stale snapshot sweep) and for
resending monitoring data (one retry after a fixed delay).
"""

import time
from typing import Callable, Type, Tuple, Any

from loguru import logger

from lvmrestic.system.exceptions import VolumeManagerError, TelemetryFailure


class RetryConfig:
    """Configuration for retry behavior"""

    def __init__(self, max_attempts: int = 3, delay: float = 5.0,
                 sleep: Callable[[float], Any] = time.sleep):
        self.max_attempts = max_attempts
        self.delay = delay
        self.sleep = sleep


SWEEP_RETRY_CONFIG = RetryConfig(max_attempts=3, delay=5.0)

TELEMETRY_RETRY_CONFIG = RetryConfig(max_attempts=2, delay=60.0)


class RetryableOperation:
    """Run a function, retrying the listed exceptions with detailed logging"""

    def __init__(
        self,
        operation_name: str,
        config: RetryConfig = None,
        retryable_exceptions: Tuple[Type[Exception], ...] = (VolumeManagerError,)
    ):
        self.operation_name = operation_name
        self.config = config or SWEEP_RETRY_CONFIG
        self.retryable_exceptions = retryable_exceptions
        self.attempt = 0

    def execute(self, func: Callable, *args, **kwargs) -> Any:
        """Execute a function with retry logic"""
        last_exception = None

        for attempt in range(1, self.config.max_attempts + 1):
            self.attempt = attempt
            try:
                logger.debug(f"Executing {self.operation_name} (attempt {attempt}/{self.config.max_attempts})")
                result = func(*args, **kwargs)

                if attempt > 1:
                    logger.info(f"{self.operation_name} succeeded on attempt {attempt}")

                return result

            except self.retryable_exceptions as e:
                last_exception = e

                if attempt >= self.config.max_attempts:
                    break

                logger.warning(
                    f"{self.operation_name} failed on attempt {attempt}/{self.config.max_attempts}: {e}. "
                    f"Retrying in {self.config.delay:.0f} seconds..."
                )

                if self.config.delay > 0:
                    self.config.sleep(self.config.delay)

        logger.error(f"{self.operation_name} failed after {self.config.max_attempts} attempts")
        raise last_exception


def retry_telemetry_send(func: Callable, *args, config: RetryConfig = None, **kwargs) -> Any:
    """Send monitoring data, retrying once after a fixed backoff"""
    operation = RetryableOperation("telemetry send", config or TELEMETRY_RETRY_CONFIG, (TelemetryFailure,))
    return operation.execute(func, *args, **kwargs)
