"""
Editable overlay: per-document exclusions, image overrides and text edits.

State changes apply in memory immediately so the next render sees them.
Persistence happens off the caller's thread on a single worker, so writes
land in the order they were made.  Text edits are debounced per
(block, field).  A failed write is logged and reported through ``notify``;
the in-memory state is kept and the write is not retried.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, Iterable, Optional, Tuple

from enhanced_error_handler import error_handler, PersistenceError
from .models import OverlaySnapshot

logger = logging.getLogger(__name__)

EXCLUDED_KEY = "excluded_item_ids"
IMAGE_OVERRIDES_KEY = "image_overrides"

PersistFn = Callable[[str, str, object], None]


class EditableOverlay:
    """Mutable editing state for one document's products block."""

    def __init__(self, block_id: str, persist: PersistFn, *, notify: Optional[Callable[[str], None]] = None,
                 debounce_seconds: float = 1.0, excluded_item_ids: Iterable = (),
                 image_overrides: Optional[Dict[str, Optional[str]]] = None):
        self.block_id = str(block_id)
        self._persist = persist
        self._notify = notify
        self.debounce_seconds = max(0.0, float(debounce_seconds))

        self._lock = threading.RLock()
        self._excluded = set(str(i) for i in excluded_item_ids)
        self._images: Dict[str, Optional[str]] = dict(image_overrides or {})
        self._text: Dict[Tuple[str, str], str] = {}
        self._timers: Dict[Tuple[str, str], threading.Timer] = {}
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"overlay-{self.block_id}")
        self._closed = False

    @classmethod
    def from_saved(cls, block_id: str, saved: Optional[Dict[str, object]], persist: PersistFn, **kwargs):
        """Restore from the key/value map a block store returns for block_id."""
        saved = saved if isinstance(saved, dict) else {}
        excluded = saved.get(EXCLUDED_KEY)
        images = saved.get(IMAGE_OVERRIDES_KEY)
        return cls(
            block_id,
            persist,
            excluded_item_ids=excluded if isinstance(excluded, list) else (),
            image_overrides=images if isinstance(images, dict) else None,
            **kwargs,
        )

    # ----------------------- mutations -----------------------

    def toggle_exclusion(self, item_id) -> bool:
        """Flip an item's exclusion; returns True when the item is now excluded."""
        key = str(item_id)
        with self._lock:
            if key in self._excluded:
                self._excluded.discard(key)
                now_excluded = False
            else:
                self._excluded.add(key)
                now_excluded = True
            value = sorted(self._excluded)
        self._submit(self.block_id, EXCLUDED_KEY, value)
        return now_excluded

    def set_image_override(self, item_id, url: Optional[str]):
        """Override an item's image; None hides it."""
        with self._lock:
            self._images[str(item_id)] = url
            value = dict(self._images)
        self._submit(self.block_id, IMAGE_OVERRIDES_KEY, value)

    def clear_image_override(self, item_id):
        with self._lock:
            self._images.pop(str(item_id), None)
            value = dict(self._images)
        self._submit(self.block_id, IMAGE_OVERRIDES_KEY, value)

    def update_text(self, block_id: str, field: str, value: str):
        """Record a text edit; only the last value inside the debounce window is written."""
        key = (str(block_id), str(field))
        with self._lock:
            self._text[key] = value
            previous = self._timers.pop(key, None)
            if previous is not None:
                previous.cancel()
            if self._closed:
                return
            if self.debounce_seconds == 0:
                self._executor.submit(self._write_text, key)
                return
            timer = threading.Timer(self.debounce_seconds, self._fire_text, args=(key,))
            timer.daemon = True
            self._timers[key] = timer
            timer.start()

    def _fire_text(self, key):
        with self._lock:
            self._timers.pop(key, None)
            if self._closed:
                return
            self._executor.submit(self._write_text, key)

    def _write_text(self, key):
        with self._lock:
            value = self._text.get(key)
        self._write(key[0], key[1], value)

    # ----------------------- reads -----------------------

    def snapshot(self) -> OverlaySnapshot:
        with self._lock:
            return OverlaySnapshot(excluded_item_ids=frozenset(self._excluded),
                                   image_overrides=dict(self._images))

    def text_value(self, block_id: str, field: str, default=None):
        with self._lock:
            return self._text.get((str(block_id), str(field)), default)

    def text_edits(self) -> Dict[str, Dict[str, str]]:
        """Every text edit made through this overlay, as {block_id: {field: value}}."""
        with self._lock:
            edits: Dict[str, Dict[str, str]] = {}
            for (block_id, field), value in self._text.items():
                edits.setdefault(block_id, {})[field] = value
            return edits

    @property
    def pending_text(self) -> int:
        with self._lock:
            return len(self._timers)

    # ----------------------- persistence -----------------------

    def _submit(self, block_id, key, value):
        with self._lock:
            if self._closed:
                logger.warning(f"Overlay {self.block_id} is closed, dropping write of {key}")
                return
            self._executor.submit(self._write, block_id, key, value)

    def _write(self, block_id, key, value):
        try:
            self._persist(block_id, key, value)
        except Exception as e:
            error = PersistenceError(f"Could not save {key} for block {block_id}: {e}")
            error.__cause__ = e
            error_handler.log_error('persistence_error', error, {'block_id': block_id, 'key': key})
            if self._notify is not None:
                try:
                    self._notify(f"Your change to {key.replace('_', ' ')} could not be saved.")
                except Exception as notify_error:
                    logger.error(f"Overlay notify callback failed: {notify_error}")

    def flush(self, timeout: Optional[float] = None):
        """Write any debounced text now and wait until queued writes finish."""
        with self._lock:
            timers = list(self._timers.items())
            self._timers.clear()
            for key, timer in timers:
                timer.cancel()
            if not self._closed:
                for key, _ in timers:
                    self._executor.submit(self._write_text, key)
                barrier = self._executor.submit(lambda: None)
            else:
                barrier = None
        if barrier is not None:
            barrier.result(timeout=timeout)

    def close(self):
        """Flush pending work and stop the writer thread."""
        self.flush()
        with self._lock:
            self._closed = True
        self._executor.shutdown(wait=True)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False
