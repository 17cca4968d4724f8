"""
Cancellation token for long-running execution.

The controller polls ``is_cancellation_requested`` once per retired
instruction; a front end thread calls ``cancel()``.
"""

import threading
from typing import Optional


class CancellationToken:
    def __init__(self):
        self._event = threading.Event()

    def cancel(self):
        self._event.set()

    @property
    def is_cancellation_requested(self) -> bool:
        return self._event.is_set()


def is_cancelled(token: Optional[CancellationToken]) -> bool:
    return token is not None and token.is_cancellation_requested
