"""
Tests for the central error handler and its decorators.
"""

import sys
import os

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from enhanced_error_handler import (
    ErrorHandler,
    MalformedComponentError,
    create_error_response,
    error_handler,
    handle_errors,
    log_performance,
)


def test_counts_and_alert_once_at_threshold():
    handler = ErrorHandler()
    handler.error_thresholds['render_error'] = 2
    alerts = []
    handler.register_alert_callback(lambda key, details: alerts.append((key, details['fallback'])))

    for _ in range(3):
        handler.log_error('render_error', ValueError("boom"), {'block_id': 'totals'})

    assert handler.count('render_error') == 3
    assert alerts == [("render_error_ValueError", "block replaced by a could-not-render notice")]

    handler.reset_error_counts()
    assert handler.get_error_stats()['total_errors'] == 0


def test_failing_alert_callback_is_contained():
    handler = ErrorHandler()
    handler.error_thresholds['unknown_block'] = 1

    def broken(key, details):
        raise RuntimeError("pager offline")

    handler.register_alert_callback(broken)
    handler.log_error('unknown_block', MalformedComponentError("carousel"))
    assert handler.count('unknown_block') == 1


def test_handle_errors_returns_fallback():
    @handle_errors('token_error', fallback_response="")
    def explode():
        raise KeyError("client")

    before = error_handler.count('token_error')
    assert explode() == ""
    assert error_handler.count('token_error') == before + 1


def test_handle_errors_reraises_without_fallback():
    @handle_errors('render_error')
    def explode():
        raise ValueError("bad")

    with pytest.raises(ValueError):
        explode()


def test_create_error_response_shape():
    body, status = create_error_response("Body must contain field", 400, {'field': None})
    assert status == 400
    assert body['success'] is False
    assert body['error'] == "Body must contain field"
    assert body['details'] == {'field': None}


def test_log_performance_passes_result_and_errors_through():
    @log_performance
    def add(a, b):
        return a + b

    @log_performance
    def fail():
        raise LookupError("missing")

    assert add(2, 3) == 5
    with pytest.raises(LookupError):
        fail()
