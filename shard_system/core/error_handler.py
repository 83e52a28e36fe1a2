#!/usr/bin/env python3
"""
ErrorHandler - Centralized error routing for the shard system

Contained failures (tree building, skipped shards, missing shard children)
are reported here and the caller carries on. Turn failures are reported here
too, but the caller re-raises: this handler never decides that a failed
turn is fine.

Each report becomes an ErrorRecord (optionally tied to a point id), is
logged at the level its severity maps to, and, unless it repeats inside the
suppression window, lands in the alert queue as rich markup for the UI.
"""

import logging
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from rich.console import Console


class ErrorSeverity(Enum):
    """How much of the current operation survived."""
    CRITICAL_STOP = "critical_stop"       # Stop, caller must handle
    HIGH_DEGRADE = "high_degrade"         # Operation failed, state unchanged
    MEDIUM_ALERT = "medium_alert"         # Degraded result, show in alerts panel
    LOW_DEBUG = "low_debug"               # Background issue, show only in debug mode


class ErrorCategory(Enum):
    """Which component raised it."""
    GRAPH_STORE = "graph_store"               # In-process point cache
    THREAD_GRAPH = "thread_graph"             # Root / continuation / fork decisions
    SHARD_SEGMENTATION = "shard_segmentation" # Anchors and shard attach
    TREE_BUILD = "tree_build"                 # Node creation and hierarchy assembly
    TREE_FLATTEN = "tree_flatten"             # Expansion-aware linearization
    EXPANSION_STATE = "expansion_state"       # Per-node expand/collapse store
    PERSISTENCE = "persistence"               # Point storage collaborator
    COMPLETION = "completion"                 # AI completion service

    GENERAL = "general"
    UNKNOWN = "unknown"


SEVERITY_STYLE = {
    ErrorSeverity.CRITICAL_STOP: "red bold",
    ErrorSeverity.HIGH_DEGRADE: "red",
    ErrorSeverity.MEDIUM_ALERT: "yellow",
    ErrorSeverity.LOW_DEBUG: "dim yellow",
}

SEVERITY_LOG_LEVEL = {
    ErrorSeverity.CRITICAL_STOP: logging.ERROR,
    ErrorSeverity.HIGH_DEGRADE: logging.ERROR,
    ErrorSeverity.MEDIUM_ALERT: logging.WARNING,
    ErrorSeverity.LOW_DEBUG: logging.DEBUG,
}

MAX_RECENT_ERRORS = 100


@dataclass
class ErrorRecord:
    """One reported (not suppressed) error."""
    category: ErrorCategory
    severity: ErrorSeverity
    error_type: str
    message: str
    context: str = ""
    operation: str = ""
    point_id: Optional[str] = None
    error_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=datetime.now)
    acknowledged: bool = False

    @property
    def key(self) -> str:
        return f"{self.category.value}_{self.error_type}"

    def describe(self) -> str:
        """Operation, context and a clipped message on one line."""
        text = self.message if len(self.message) <= 100 else self.message[:100] + "..."
        if self.context:
            text = f"{self.context}: {text}"
        if self.operation:
            text = f"During {self.operation} - {text}"
        return text

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_id": self.error_id,
            "timestamp": self.timestamp.isoformat(),
            "category": self.category.value,
            "severity": self.severity.value,
            "error_type": self.error_type,
            "message": self.message,
            "context": self.context,
            "operation": self.operation,
            "point_id": self.point_id,
            "acknowledged": self.acknowledged,
        }


class ErrorHandler:
    """
    Usage:
        handler = ErrorHandler()
        handler.handle_error(exc, ErrorCategory.TREE_BUILD, ErrorSeverity.MEDIUM_ALERT,
                             operation="build", point_id="T001")
        handler.get_alerts_for_ui()
    """

    def __init__(self, console: Optional[Console] = None, debug_mode: bool = False):
        self.console = console if console is not None else Console(stderr=True)
        self.debug_mode = debug_mode

        self.error_counts: Dict[str, int] = defaultdict(int)
        self.suppressed_errors: Dict[str, int] = defaultdict(int)
        self.last_error_time: Dict[str, datetime] = {}
        self.recent_errors: List[ErrorRecord] = []

        self.alert_queue: List[str] = []
        self.critical_alerts: List[str] = []

        self.logger = logging.getLogger('shard_system.errors')

    def handle_error(self,
                     error: Exception,
                     category: ErrorCategory,
                     severity: ErrorSeverity,
                     context: str = "",
                     operation: str = "",
                     point_id: Optional[str] = None,
                     suppress_duplicate_minutes: int = 5) -> bool:
        """
        Record, route and log an error.

        Args:
            error: The exception that occurred
            category: Which component it came from
            severity: How much of the operation survived
            context: What was being worked on
            operation: Which call failed
            point_id: Point the failure is about, if any
            suppress_duplicate_minutes: Identical category/type inside this window only bumps a counter

        Returns:
            bool: True if the caller may continue, False if it must stop
        """
        record = ErrorRecord(
            category=category,
            severity=severity,
            error_type=type(error).__name__,
            message=str(error),
            context=context,
            operation=operation,
            point_id=point_id,
        )
        self.error_counts[record.key] += 1

        if self._is_duplicate(record, suppress_duplicate_minutes):
            self.suppressed_errors[record.key] += 1
            return severity != ErrorSeverity.CRITICAL_STOP

        self.last_error_time[record.key] = record.timestamp
        self.recent_errors.append(record)
        del self.recent_errors[:-MAX_RECENT_ERRORS]

        line = self._alert_line(record)
        self._route(line, severity)
        self.logger.log(
            SEVERITY_LOG_LEVEL[severity],
            f"{category.value}: {line}",
            exc_info=self.debug_mode and severity in (ErrorSeverity.CRITICAL_STOP, ErrorSeverity.HIGH_DEGRADE),
        )

        return severity != ErrorSeverity.CRITICAL_STOP

    def _is_duplicate(self, record: ErrorRecord, window_minutes: int) -> bool:
        last = self.last_error_time.get(record.key)
        if window_minutes <= 0 or last is None:
            return False
        return (record.timestamp - last).total_seconds() < window_minutes * 60

    def _alert_line(self, record: ErrorRecord) -> str:
        line = record.describe()
        count = self.error_counts[record.key]
        if count > 1:
            line += f" (#{count})"
        suppressed = self.suppressed_errors.pop(record.key, 0)
        if suppressed:
            line += f" [+{suppressed} suppressed]"
        return line

    def _route(self, line: str, severity: ErrorSeverity) -> None:
        style = SEVERITY_STYLE[severity]
        markup = f"[{style}]{line}[/{style}]"

        if severity == ErrorSeverity.CRITICAL_STOP:
            self.critical_alerts.append(markup)
            self.console.print(markup)
        elif severity != ErrorSeverity.LOW_DEBUG or self.debug_mode:
            self.alert_queue.append(markup)

    # =========================================================================
    # LOOKUP
    # =========================================================================

    def get_error_by_id(self, error_id: str) -> Optional[ErrorRecord]:
        for record in self.recent_errors:
            if record.error_id == error_id:
                return record
        return None

    def errors_for_point(self, point_id: str) -> List[ErrorRecord]:
        return [r for r in self.recent_errors if r.point_id == point_id]

    def acknowledge_error(self, error_id: str) -> Dict[str, Any]:
        record = self.get_error_by_id(error_id)
        if record is None:
            return {'success': False, 'error': f'Error ID not found: {error_id}', 'error_id': error_id}

        record.acknowledged = True
        return {
            'success': True,
            'error_id': error_id,
            'error_category': record.category.value,
            'error_message': record.message,
        }

    def get_alerts_for_ui(self, max_alerts: int = 8, clear_after: bool = True) -> List[str]:
        """Critical alerts first, newest max_alerts overall."""
        alerts = (self.critical_alerts + self.alert_queue)[-max_alerts:]
        if clear_after:
            self.critical_alerts = []
            self.alert_queue = []
        return alerts

    def peek_alerts_for_ui(self, max_alerts: int = 8) -> List[str]:
        return self.get_alerts_for_ui(max_alerts, clear_after=False)

    def get_error_summary(self) -> Dict[str, Any]:
        return {
            'total_errors': sum(self.error_counts.values()),
            'error_counts_by_type': dict(self.error_counts),
            'recent_error_count': len(self.recent_errors),
            'unacknowledged_count': sum(1 for r in self.recent_errors if not r.acknowledged),
            'suppressed_count': sum(self.suppressed_errors.values()),
            'categories_with_errors': sorted({r.category.value for r in self.recent_errors}),
            'most_common_errors': sorted(self.error_counts.items(), key=lambda x: x[1], reverse=True)[:5],
        }

    def create_context_manager(self, category: ErrorCategory, severity: ErrorSeverity,
                               operation: str = "", context: str = "",
                               point_id: Optional[str] = None) -> "ErrorContext":
        return ErrorContext(self, category, severity, operation, context, point_id)


class ErrorContext:
    """
    with handler.create_context_manager(ErrorCategory.TREE_FLATTEN, ErrorSeverity.MEDIUM_ALERT):
        ...

    Non-critical exceptions are reported and swallowed; CRITICAL_STOP re-raises.
    """

    def __init__(self, error_handler: ErrorHandler, category: ErrorCategory,
                 severity: ErrorSeverity, operation: str = "", context: str = "",
                 point_id: Optional[str] = None):
        self.error_handler = error_handler
        self.category = category
        self.severity = severity
        self.operation = operation
        self.context = context
        self.point_id = point_id

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is not None and issubclass(exc_type, Exception):
            return self.error_handler.handle_error(
                exc_val,
                self.category,
                self.severity,
                context=self.context,
                operation=self.operation,
                point_id=self.point_id,
            )
        return False
