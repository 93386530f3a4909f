import threading
from contextlib import ExitStack, contextmanager
from typing import Dict, List, Optional


def tx_key(tx_id) -> str:
    return f"tx:{tx_id}"


def wallet_key(wallet_id) -> Optional[str]:
    return f"wallet:{wallet_id}" if wallet_id else None


def category_key(category_id) -> Optional[str]:
    return f"category:{category_id}" if category_id else None


class KeyedLocks:
    """One re-entrant lock per key (wallet id, transaction id).

    Several keys are always acquired in sorted order so two callers
    holding overlapping sets cannot deadlock. A key's lock lives only while
    someone holds or waits for it. Locks only serialize work inside this
    process.
    """

    def __init__(self):
        self._guard = threading.Lock()
        # key -> [lock, number of holders and waiters]
        self._locks: Dict[str, List] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    @contextmanager
    def _held(self, key: str):
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = self._locks[key] = [threading.RLock(), 0]
            entry[1] += 1
        lock = entry[0]
        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]

    @contextmanager
    def hold(self, *keys: Optional[str]):
        wanted = sorted({k for k in keys if k})
        with ExitStack() as stack:
            for key in wanted:
                stack.enter_context(self._held(key))
            yield
