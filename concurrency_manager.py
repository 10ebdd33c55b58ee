"""
Concurrency Management Module
Caps simultaneous PDF exports and runs latest-only background fetches
"""

import threading
import time
import logging
from concurrent.futures import ThreadPoolExecutor, Future, CancelledError
from contextlib import contextmanager
from functools import wraps
from typing import Any, Callable, Dict, Optional

from deployment_config import DeploymentConfig

logger = logging.getLogger(__name__)


class ExportSlots:
    """Fixed number of export slots; a request that finds none free is turned away, not queued"""

    def __init__(self, max_concurrent: int = 4):
        self.max_concurrent = max_concurrent
        self.lock = threading.Lock()
        self.active: Dict[str, float] = {}
        self.rejected = 0

    def acquire(self, owner: str) -> bool:
        with self.lock:
            if len(self.active) >= self.max_concurrent:
                self.rejected += 1
                logger.warning(f"Export for {owner} rejected ({len(self.active)}/{self.max_concurrent} busy)")
                return False
            self.active[owner] = time.time()
            return True

    def release(self, owner: str):
        with self.lock:
            started = self.active.pop(owner, None)
        if started is not None:
            logger.info(f"Export for {owner} finished in {time.time() - started:.2f}s")

    @contextmanager
    def slot(self, owner: str):
        """Yields whether a slot was obtained; releases it on exit"""
        acquired = self.acquire(owner)
        try:
            yield acquired
        finally:
            if acquired:
                self.release(owner)

    def get_status(self) -> Dict[str, Any]:
        with self.lock:
            return {
                'active_exports': len(self.active),
                'max_concurrent': self.max_concurrent,
                'rejected': self.rejected,
            }


export_slots = ExportSlots(max_concurrent=DeploymentConfig.MAX_CONCURRENT_EXPORTS)


def limit_concurrent_exports(func):
    """Flask view decorator: 503 JSON when every export slot is taken"""
    @wraps(func)
    def wrapper(*args, **kwargs):
        # one slot per call even when the same document is exported twice
        owner = f"{kwargs.get('doc_id', func.__name__)}#{threading.get_ident()}-{time.monotonic_ns()}"
        with export_slots.slot(owner) as acquired:
            if not acquired:
                return {'success': False, 'error': 'Too many exports in progress, please try again shortly'}, 503
            return func(*args, **kwargs)
    return wrapper


class LatestOnlyFetcher:
    """
    Runs fetch_fn(key) in the background; only the most recent selection counts.

    Selecting a new key supersedes the previous fetch: it is cancelled if it
    has not started yet, otherwise its result is discarded when it arrives.
    """

    def __init__(self, fetch_fn: Callable[[Any], Any], max_workers: int = 2):
        self._fetch_fn = fetch_fn
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="latest-fetch")
        self._lock = threading.Lock()
        self._generation = 0
        self._key = None
        self._future: Optional[Future] = None
        self._result = None
        self._has_result = False

    def select(self, key) -> int:
        """Start fetching key; returns the generation number of this selection."""
        with self._lock:
            self._generation += 1
            generation = self._generation
            previous = self._future
            self._key = key
            self._result = None
            self._has_result = False
            self._future = self._executor.submit(self._run, generation, key)
        if previous is not None and previous.cancel():
            logger.debug(f"Cancelled superseded fetch (generation {generation - 1})")
        return generation

    def _run(self, generation, key):
        value = self._fetch_fn(key)
        with self._lock:
            if generation != self._generation:
                logger.debug(f"Discarding stale fetch result for {key!r}")
                return value
            self._result = value
            self._has_result = True
        return value

    @property
    def selected_key(self):
        with self._lock:
            return self._key

    @property
    def generation(self) -> int:
        with self._lock:
            return self._generation

    def current(self, timeout: Optional[float] = None):
        """
        Wait for the latest selection and return its result.

        Returns None when nothing was selected. A selection made while
        waiting is followed, so the value returned always belongs to the
        newest key. Errors raised by fetch_fn propagate.
        """
        while True:
            with self._lock:
                future = self._future
                generation = self._generation
                if future is None:
                    return None
                if self._has_result:
                    return self._result
            try:
                future.result(timeout=timeout)
            except CancelledError:
                pass
            with self._lock:
                if generation == self._generation:
                    if self._has_result:
                        return self._result
                    # only reachable once close() cancelled the fetch
                    return future.result(timeout=0)

    def close(self):
        with self._lock:
            future = self._future
        if future is not None:
            future.cancel()
        self._executor.shutdown(wait=True)
