"""Exceptions raised by the learning-path engine.

Each error subclasses the builtin category callers already catch
(``ValueError`` for bad input, ``LookupError`` for missing records) so request
handlers can keep their existing ``except`` clauses.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class PathEngineError(Exception):
    """Base class for every engine failure."""

    code = "path_engine_error"

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = dict(details or {})


class EmptyContentSet(PathEngineError, ValueError):
    """Constraint evaluation selected no content."""

    code = "empty_content_set"


class InvalidRule(PathEngineError, ValueError):
    """A generation rule is missing pace fields or is otherwise malformed."""

    code = "invalid_rule"


class InvalidSchedule(PathEngineError, ValueError):
    """A slot set breaks the (week, day, order) invariants."""

    code = "invalid_schedule"


class InvalidLearnerId(PathEngineError, ValueError):
    """A learner id is empty once surrounding whitespace is removed."""

    code = "invalid_learner_id"


class ScheduleNotFound(PathEngineError, LookupError):
    code = "schedule_not_found"


class RecordNotFound(PathEngineError, LookupError):
    code = "record_not_found"


class TemplateNotFound(PathEngineError, LookupError):
    code = "template_not_found"


class MigrationConflict(PathEngineError):
    """A path switch cannot proceed in the current state."""

    code = "migration_conflict"


class TransactionFailure(PathEngineError):
    """A multi-step write failed partway and was rolled back."""

    code = "transaction_failure"


__all__ = [
    "EmptyContentSet",
    "InvalidLearnerId",
    "InvalidRule",
    "InvalidSchedule",
    "MigrationConflict",
    "PathEngineError",
    "RecordNotFound",
    "ScheduleNotFound",
    "TemplateNotFound",
    "TransactionFailure",
]
