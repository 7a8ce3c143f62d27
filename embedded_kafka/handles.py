"""Single-slot shared references owned by the harness."""

import threading
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


class ResourceHandle(Generic[T]):
    """
    Holds at most one fully-constructed resource.

    Values are built before they are offered, so readers only ever observe
    "absent" or a complete instance.
    """

    def __init__(self, name: str):
        self.name = name
        self._lock = threading.Lock()
        self._value: Optional[T] = None

    def get(self) -> Optional[T]:
        with self._lock:
            return self._value

    def set_if_empty(self, value: T) -> bool:
        if value is None:
            raise ValueError(f"{self.name}: cannot store None")
        with self._lock:
            if self._value is not None:
                return False
            self._value = value
            return True

    def clear(self) -> Optional[T]:
        """Empty the slot and return what it held."""
        with self._lock:
            value, self._value = self._value, None
            return value

    @property
    def is_empty(self) -> bool:
        return self.get() is None

    def __repr__(self):
        return f"ResourceHandle({self.name!r}, empty={self.is_empty})"


class AtomicFlag:
    def __init__(self, value: bool = False):
        self._lock = threading.Lock()
        self._value = value

    def get(self) -> bool:
        with self._lock:
            return self._value

    def set(self, value: bool) -> None:
        with self._lock:
            self._value = value

    def compare_and_set(self, expected: bool, new: bool) -> bool:
        with self._lock:
            if self._value != expected:
                return False
            self._value = new
            return True
