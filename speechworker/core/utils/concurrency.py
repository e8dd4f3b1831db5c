# core/utils/concurrency.py
from __future__ import annotations

import threading
from speechworker.core.utils.errors import OperationCancelled


class CancellationToken:
    """
    Shared cancellation flag checked between pipeline steps.

    Setting it is safe from any thread; the worker thread only polls it.
    """

    def __init__(self) -> None:
        self._flag = threading.Event()

    def cancel(self) -> None:
        self._flag.set()

    def reset(self) -> None:
        self._flag.clear()

    @property
    def is_cancelled(self) -> bool:
        return self._flag.is_set()

    def raise_if_cancelled(self) -> None:
        if self._flag.is_set():
            raise OperationCancelled()
