"""
ErrorHandler Tests

Routing by severity, duplicate suppression, acknowledgement and the
context manager.
"""

import pytest
from unittest.mock import MagicMock

from shard_system.core.datashapes import InvalidAnchorError, Anchor
from shard_system.core.error_handler import ErrorCategory, ErrorHandler, ErrorSeverity


@pytest.fixture
def handler():
    return ErrorHandler(console=MagicMock())


class TestErrorRouting:

    def test_critical_prints_and_stops(self, handler):
        keep_going = handler.handle_error(RuntimeError("disk gone"), ErrorCategory.PERSISTENCE,
                                          ErrorSeverity.CRITICAL_STOP)
        assert keep_going is False
        handler.console.print.assert_called_once()
        assert handler.critical_alerts

    def test_high_and_medium_queue_alerts(self, handler):
        handler.handle_error(RuntimeError("a"), ErrorCategory.THREAD_GRAPH, ErrorSeverity.HIGH_DEGRADE)
        handler.handle_error(ValueError("b"), ErrorCategory.TREE_BUILD, ErrorSeverity.MEDIUM_ALERT)

        alerts = handler.get_alerts_for_ui()
        assert len(alerts) == 2
        assert alerts[0].startswith("[red]")
        assert alerts[1].startswith("[yellow]")
        assert handler.get_alerts_for_ui() == []

    def test_low_only_alerts_in_debug(self, handler):
        handler.handle_error(RuntimeError("quiet"), ErrorCategory.GENERAL, ErrorSeverity.LOW_DEBUG)
        assert handler.peek_alerts_for_ui() == []

        debug = ErrorHandler(console=MagicMock(), debug_mode=True)
        debug.handle_error(RuntimeError("quiet"), ErrorCategory.GENERAL, ErrorSeverity.LOW_DEBUG)
        assert len(debug.peek_alerts_for_ui()) == 1

    def test_message_carries_operation_and_context(self, handler):
        error = InvalidAnchorError(Anchor(30, 20), "start position is after end position")
        handler.handle_error(error, ErrorCategory.SHARD_SEGMENTATION, ErrorSeverity.HIGH_DEGRADE,
                             context="point T001", operation="add_turn")
        alert = handler.peek_alerts_for_ui()[0]
        assert "During add_turn" in alert
        assert "point T001" in alert


class TestSuppression:

    def test_duplicates_suppressed_in_window(self, handler):
        for _ in range(3):
            handler.handle_error(RuntimeError("same"), ErrorCategory.COMPLETION, ErrorSeverity.MEDIUM_ALERT)

        summary = handler.get_error_summary()
        assert summary["total_errors"] == 3
        assert summary["suppressed_count"] == 2
        assert len(handler.peek_alerts_for_ui()) == 1

    def test_zero_window_never_suppresses(self, handler):
        for _ in range(3):
            handler.handle_error(RuntimeError("same"), ErrorCategory.COMPLETION,
                                 ErrorSeverity.MEDIUM_ALERT, suppress_duplicate_minutes=0)
        assert len(handler.recent_errors) == 3


class TestAcknowledgeAndContext:

    def test_acknowledge(self, handler):
        handler.handle_error(RuntimeError("x"), ErrorCategory.GENERAL, ErrorSeverity.MEDIUM_ALERT)
        error_id = handler.recent_errors[0].error_id

        result = handler.acknowledge_error(error_id)
        assert result["success"] is True
        assert result["error_category"] == "general"
        assert handler.acknowledge_error("missing")["success"] is False

    def test_context_manager_swallows_non_critical(self, handler):
        with handler.create_context_manager(ErrorCategory.TREE_FLATTEN, ErrorSeverity.MEDIUM_ALERT,
                                            operation="flatten"):
            raise ValueError("bad node")
        assert handler.recent_errors[-1].category == ErrorCategory.TREE_FLATTEN

    def test_context_manager_reraises_critical(self, handler):
        with pytest.raises(ValueError):
            with handler.create_context_manager(ErrorCategory.GRAPH_STORE, ErrorSeverity.CRITICAL_STOP):
                raise ValueError("corrupt")


class TestErrorRecords:

    def test_errors_for_point(self, handler):
        handler.handle_error(RuntimeError("bad split"), ErrorCategory.TREE_BUILD,
                             ErrorSeverity.MEDIUM_ALERT, point_id="T001")
        handler.handle_error(KeyError("other"), ErrorCategory.TREE_BUILD,
                             ErrorSeverity.MEDIUM_ALERT, point_id="T002")

        records = handler.errors_for_point("T001")
        assert len(records) == 1
        assert records[0].error_type == "RuntimeError"

        data = records[0].to_dict()
        assert data["point_id"] == "T001"
        assert data["category"] == "tree_build"

    def test_acknowledged_leaves_unacknowledged_count(self, handler):
        handler.handle_error(RuntimeError("x"), ErrorCategory.GENERAL, ErrorSeverity.MEDIUM_ALERT)
        handler.acknowledge_error(handler.recent_errors[0].error_id)
        assert handler.get_error_summary()["unacknowledged_count"] == 0

    def test_recent_errors_are_capped(self, handler):
        for i in range(105):
            handler.handle_error(RuntimeError(str(i)), ErrorCategory.GENERAL,
                                 ErrorSeverity.LOW_DEBUG, suppress_duplicate_minutes=0)
        assert len(handler.recent_errors) == 100
        assert handler.recent_errors[0].message == "5"
