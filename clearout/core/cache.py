"""
Compute-once cache cells for process-wide reference data.

Each cell is either uninitialized or holds its value for the rest of the
process lifetime. The loader runs under a lock with a double check, the
same way the model repository singletons are guarded, so concurrent first
use converges on one value.
"""

import threading
from typing import Callable, Generic, Optional, TypeVar

T = TypeVar("T")


class LazyCell(Generic[T]):
    """Thread-safe load-once holder.

    Usage:
        rules = LazyCell(load_rules, name="keyword_rules")
        rules.get()  # loads on first call, cached afterwards
    """

    def __init__(self, loader: Callable[[], T], name: str = "cell"):
        self._loader = loader
        self.name = name
        self._lock = threading.Lock()
        self._value: Optional[T] = None
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    def get(self) -> T:
        if not self._initialized:
            with self._lock:
                if not self._initialized:
                    self._value = self._loader()
                    self._initialized = True
        return self._value  # type: ignore[return-value]

    def reset(self):
        """Drop the cached value (for testing)."""
        with self._lock:
            self._value = None
            self._initialized = False
