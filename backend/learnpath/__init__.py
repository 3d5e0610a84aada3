"""Dynamic learning-path scheduling engine."""

from .constraints import ConstraintEvaluator
from .errors import (
    EmptyContentSet,
    InvalidLearnerId,
    InvalidRule,
    InvalidSchedule,
    MigrationConflict,
    PathEngineError,
    RecordNotFound,
    ScheduleNotFound,
    TemplateNotFound,
    TransactionFailure,
)
from .generator import PathGenerator
from .migration import PathMigrationMapper
from .progress import ProgressTracker
from .scheduler import Scheduler

__all__ = [
    "ConstraintEvaluator",
    "EmptyContentSet",
    "InvalidLearnerId",
    "InvalidRule",
    "InvalidSchedule",
    "MigrationConflict",
    "PathEngineError",
    "PathGenerator",
    "PathMigrationMapper",
    "ProgressTracker",
    "RecordNotFound",
    "ScheduleNotFound",
    "Scheduler",
    "TemplateNotFound",
    "TransactionFailure",
]
