# Author: PB & Claude
# Maintainer: PB
# Original date: 2025.06.21
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# tests/test_cancellation.py

import os
import signal
import threading

import pytest

from lvmrestic.core.cancellation import CancellationToken, default_interrupts, install_interrupt_handler
from lvmrestic.system.exceptions import InterruptSignal


class TestCancellationToken:

    def test_starts_uncancelled(self):
        token = CancellationToken()
        assert token.cancelled is False
        token.raise_if_cancelled()

    def test_cancel_is_one_way(self):
        token = CancellationToken()
        token.cancel()
        token.cancel()
        assert token.cancelled is True
        with pytest.raises(InterruptSignal, match="Signal interrupt received"):
            token.raise_if_cancelled()

    def test_wait_zero_returns_state(self):
        token = CancellationToken()
        assert token.wait(0) is False
        token.cancel()
        assert token.wait(0) is True

    def test_wait_ends_early_on_cancel(self):
        token = CancellationToken()
        threading.Timer(0.05, token.cancel).start()
        assert token.wait(30) is True


class TestInterruptHandler:

    def test_sigint_only_cancels(self):
        token = CancellationToken()
        previous = install_interrupt_handler(token)
        try:
            os.kill(os.getpid(), signal.SIGINT)
            assert token.wait(5) is True
        finally:
            signal.signal(signal.SIGINT, previous)


class TestDefaultInterrupts:

    def test_sigint_raises_inside_and_handler_is_restored(self):
        token = CancellationToken()
        previous = install_interrupt_handler(token)
        try:
            with pytest.raises(KeyboardInterrupt):
                with default_interrupts():
                    os.kill(os.getpid(), signal.SIGINT)
                    token.wait(5)
            assert token.cancelled is False
            os.kill(os.getpid(), signal.SIGINT)
            assert token.wait(5) is True
        finally:
            signal.signal(signal.SIGINT, previous)
