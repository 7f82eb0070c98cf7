"""Cooperative cancellation driven by SIGINT / SIGTERM."""
from __future__ import annotations

import logging
import signal
import threading
from contextlib import contextmanager
from typing import Iterator, Optional

from .errors import ProvisioningCancelled

logger = logging.getLogger("cloud_provision.cancellation")

INTERRUPT_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class CancellationToken:
    """Set once by an interrupt; checked before every provider call."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise ProvisioningCancelled(f"Provisioning interrupted ({self.reason})")


@contextmanager
def interrupt_guard(token: CancellationToken) -> Iterator[CancellationToken]:
    """Route SIGINT and SIGTERM to ``token`` for the duration of the block.

    A second signal while cancellation is pending terminates the process with exit code 1.
    """

    def _handle(signum, frame) -> None:
        name = signal.Signals(signum).name
        if token.cancelled:
            logger.warning("Received %s again; exiting immediately", name)
            raise SystemExit(1)
        logger.warning("Script interrupted by %s; stopping before the next provider call", name)
        token.cancel(name)

    previous = {}
    for signum in INTERRUPT_SIGNALS:
        previous[signum] = signal.signal(signum, _handle)
    try:
        yield token
    finally:
        for signum, handler in previous.items():
            signal.signal(signum, handler)
