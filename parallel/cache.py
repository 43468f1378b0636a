import threading
from concurrent.futures import Future
from typing import Callable, Generic, Hashable, TypeVar

K = TypeVar('K', bound=Hashable)
V = TypeVar('V')


class ReentrantComputation(RuntimeError):
    """A key was requested again by the thread that is still computing it."""

    def __init__(self, key):
        super().__init__(f"Re-entrant computation of {key!r}")
        self.key = key


class OnceCache(Generic[K, V]):
    """Memoizes ``compute(key)`` with at most one computation per key.

    The first caller of a key computes the value on its own thread; callers
    arriving while that computation runs block until it finishes and then
    share its result, or its exception. Failures are cached like values.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._entries: dict[K, Future] = {}
        self._owners: dict[K, int] = {}

    def get(self, key: K, compute: Callable[[], V]) -> V:
        me = threading.get_ident()
        with self._lock:
            future = self._entries.get(key)
            owner = future is None
            if owner:
                future = Future()
                self._entries[key] = future
                self._owners[key] = me
            elif not future.done() and self._owners.get(key) == me:
                raise ReentrantComputation(key)

        if owner:
            try:
                future.set_result(compute())
            except Exception as error:
                future.set_exception(error)
            finally:
                with self._lock:
                    self._owners.pop(key, None)
        return future.result()

    def peek(self, key: K) -> bool:
        """True if ``key`` has a finished value or failure."""
        with self._lock:
            future = self._entries.get(key)
        return future is not None and future.done()

    def __contains__(self, key: K) -> bool:
        with self._lock:
            return key in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
