"""Cooperative cancellation token shared by the registry, strategies and adapter."""

from __future__ import annotations

import threading
from typing import Optional, Protocol


class CancelTokenProtocol(Protocol):
    def is_cancelled(self) -> bool: ...


class CancelToken:
    """Thread-safe cancellation token."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    def is_cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def event(self) -> threading.Event:
        return self._event


def is_cancelled(token: Optional[CancelTokenProtocol]) -> bool:
    return bool(token and token.is_cancelled())
