# Author: PB & Claude
# Maintainer: PB
# Original date: 2025.06.21
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/lvmrestic/core/cancellation.py

"""
Cancellation token shared by the lifecycle, the pipeline and the orchestrators.

The SIGINT handler only flips the token. Cleanup happens in the code that
observes the token at its checkpoints.
"""

import signal
import threading
from contextlib import contextmanager
from typing import Callable, Iterator, Optional

from loguru import logger

from lvmrestic.system.exceptions import InterruptSignal


class CancellationToken:
    """Thread-safe one-way cancellation flag."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, seconds: float) -> bool:
        """Sleep up to seconds; returns True if cancelled meanwhile."""
        if seconds <= 0:
            return self.cancelled
        return self._event.wait(seconds)

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise InterruptSignal()


def install_interrupt_handler(token: CancellationToken) -> Callable:
    """Route SIGINT to the token; returns the previous handler."""

    def _handler(signum: int, frame: Optional[object]) -> None:
        if not token.cancelled:
            logger.warning("Trapped CTRL-C, cleaning up at the next checkpoint")
        token.cancel()

    return signal.signal(signal.SIGINT, _handler)


@contextmanager
def default_interrupts() -> Iterator[None]:
    """Let SIGINT raise KeyboardInterrupt inside the block.

    A blocking terminal read is retried after a handler that only flips the
    token, so operator prompts run under the default handler instead.
    """
    if threading.current_thread() is not threading.main_thread():
        yield
        return
    previous = signal.signal(signal.SIGINT, signal.default_int_handler)
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, previous)
