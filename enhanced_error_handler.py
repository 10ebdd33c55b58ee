"""
Error Handling Module for the quote composition engine
Provides centralized error logging, graceful degradation and the exception
types raised (and caught) while composing documents.

Composition never aborts on bad input: each error type below has a
degradation policy, and the handler only counts, logs and alerts.
"""

import logging
import threading
import traceback
from typing import Dict, Any, Optional, Callable
from functools import wraps
from datetime import datetime

logger = logging.getLogger(__name__)


class CompositionError(Exception):
    """Base class for document composition errors."""
    pass


class UnknownBlockTypeError(CompositionError):
    """Raised for a template block whose type is not in the block vocabulary."""
    pass


class MalformedComponentError(CompositionError):
    """Raised for a breakdown component missing required flags or fields."""
    pass


class PersistenceError(CompositionError):
    """Raised when an overlay write could not be stored."""
    pass


# error type -> (alert threshold, what the caller does instead of failing)
ERROR_POLICIES = {
    'missing_data': (50, "field rendered as empty string"),
    'malformed_component': (25, "component skipped"),
    'unknown_block': (10, "diagnostic placeholder rendered"),
    'render_error': (5, "block replaced by a could-not-render notice"),
    'persistence_error': (5, "user notified, optimistic state kept"),
    'locale_config': (20, "default currency, timezone or date format used"),
    'token_error': (20, "token resolved to empty string"),
}
DEFAULT_THRESHOLD = 10


class ErrorHandler:
    """Counts errors per type and class, logs them with context, alerts past a threshold"""

    def __init__(self):
        self.error_counts = {}
        self.error_thresholds = {name: policy[0] for name, policy in ERROR_POLICIES.items()}
        self.alert_callbacks = []
        # overlay writers log from worker threads
        self._lock = threading.Lock()

    def log_error(self, error_type: str, error: Exception, context: Dict[str, Any] = None,
                  level: int = logging.ERROR):
        """Log error with context and check thresholds"""
        error_key = f"{error_type}_{type(error).__name__}"
        with self._lock:
            count = self.error_counts.get(error_key, 0) + 1
            self.error_counts[error_key] = count

        error_details = {
            'timestamp': datetime.now().isoformat(),
            'error_type': error_type,
            'error_class': type(error).__name__,
            'error_message': str(error),
            'fallback': ERROR_POLICIES.get(error_type, (None, None))[1],
            'context': context or {},
            'count': count,
        }
        if error.__traceback__ is not None:
            error_details['traceback'] = ''.join(traceback.format_exception(type(error), error, error.__traceback__))

        logger.log(level, f"Error {error_key}: {error_details}")

        if count == self.error_thresholds.get(error_type, DEFAULT_THRESHOLD):
            self._trigger_alert(error_key, error_details)

    def _trigger_alert(self, error_key: str, error_details: Dict[str, Any]):
        logger.critical(f"Error threshold reached for {error_key}: {error_details['count']} occurrences")

        for callback in list(self.alert_callbacks):
            try:
                callback(error_key, error_details)
            except Exception as e:
                logger.error(f"Alert callback error: {e}")

    def register_alert_callback(self, callback: Callable[[str, Dict[str, Any]], None]):
        self.alert_callbacks.append(callback)

    def count(self, error_type: str) -> int:
        """Occurrences of error_type across all exception classes"""
        prefix = f"{error_type}_"
        with self._lock:
            return sum(n for key, n in self.error_counts.items() if key.startswith(prefix))

    def get_error_stats(self) -> Dict[str, Any]:
        with self._lock:
            counts = dict(self.error_counts)
        return {
            'error_counts': counts,
            'total_errors': sum(counts.values()),
            'error_thresholds': dict(self.error_thresholds),
        }

    def reset_error_counts(self):
        with self._lock:
            self.error_counts.clear()
        logger.info("Error counts reset")


# Global error handler instance
error_handler = ErrorHandler()


def handle_errors(error_type: str, fallback_response: Any = None):
    """
    Log any exception from the wrapped call under error_type.
    With a fallback_response the exception is absorbed and the fallback returned;
    without one it is re-raised after logging.
    """
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except Exception as e:
                context = {
                    'function': func.__name__,
                    'args_count': len(args),
                    'kwargs_keys': list(kwargs.keys()) if kwargs else []
                }
                error_handler.log_error(error_type, e, context)
                if fallback_response is None:
                    raise
                return fallback_response
        return wrapper
    return decorator


def create_error_response(error_message: str, error_code: int = 500, details: Optional[Dict[str, Any]] = None) -> tuple:
    """JSON body and status for API errors"""
    response = {
        'success': False,
        'error': error_message,
        'timestamp': datetime.now().isoformat(),
        'details': details or {}
    }
    return response, error_code


def log_performance(func):
    """Log how long func took, or how long it ran before failing"""
    @wraps(func)
    def wrapper(*args, **kwargs):
        start_time = datetime.now()
        try:
            result = func(*args, **kwargs)
        except Exception as e:
            duration = (datetime.now() - start_time).total_seconds()
            logger.error(f"{func.__qualname__} failed after {duration:.3f}s: {e}")
            raise
        duration = (datetime.now() - start_time).total_seconds()
        logger.info(f"{func.__qualname__} completed in {duration:.3f}s")
        return result
    return wrapper
