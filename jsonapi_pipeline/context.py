"""Operation context: cancellation, deadline and request scoped values.

One context is threaded through every stage of an operation: the hooks, the handlers
and every storage call. Storage calls check the context first so that a cancelled
or timed out operation fails fast.
"""

from __future__ import annotations

import threading
import time
from types import MappingProxyType
from typing import Any, Mapping, Optional

from .errors import OperationCancelled


class OperationContext:
    """
    Cancellation signal, optional deadline and immutable key/value pairs.
    Derived contexts are cancelled together with their parent.
    """

    def __init__(self, deadline: Optional[float] = None, values: Optional[Mapping[str, Any]] = None, parent: Optional["OperationContext"] = None) -> None:
        """
        :param deadline: time.monotonic() timestamp after which the context is expired
        :param values: context values
        :param parent: parent context
        """
        self._parent = parent
        self._cancelled = threading.Event()
        self._deadline = deadline
        self._values = MappingProxyType(dict(values or {}))

    @classmethod
    def background(cls) -> "OperationContext":
        return cls()

    @property
    def deadline(self) -> Optional[float]:
        deadlines = [d for d in (self._deadline, self._parent.deadline if self._parent else None) if d is not None]
        return min(deadlines) if deadlines else None

    @property
    def values(self) -> Mapping[str, Any]:
        if self._parent is None:
            return self._values
        merged = dict(self._parent.values)
        merged.update(self._values)
        return MappingProxyType(merged)

    def value(self, key: str, default: Any = None) -> Any:
        return self.values.get(key, default)

    def with_value(self, key: str, value: Any) -> "OperationContext":
        return OperationContext(values={key: value}, parent=self)

    def with_timeout(self, seconds: float) -> "OperationContext":
        return OperationContext(deadline=time.monotonic() + seconds, parent=self)

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        if self._cancelled.is_set():
            return True
        return self._parent is not None and self._parent.cancelled

    @property
    def expired(self) -> bool:
        deadline = self.deadline
        return deadline is not None and time.monotonic() >= deadline

    def check(self) -> None:
        """
        :raise OperationCancelled: the context is cancelled or its deadline has passed
        """
        if self.cancelled:
            raise OperationCancelled("operation context cancelled")
        if self.expired:
            raise OperationCancelled("operation deadline exceeded")
