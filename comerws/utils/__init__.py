"""
Utility modules for the comerws backend.
"""

from .error_handling import (
    ErrorHandler,
    ComerWSError,
    ValidationError,
    ProcessingError,
    CommandError,
    FileError,
    InputError,
    ArchiveError,
    StageError,
    RetryPolicy,
    error_handler,
)
from .common import run_command_safe, setup_logging
from .job_messages import JobReporter

__all__ = [
    # Error handling
    "ErrorHandler",
    "error_handler",
    "ComerWSError",
    "ValidationError",
    "ProcessingError",
    "CommandError",
    "FileError",
    "InputError",
    "ArchiveError",
    "StageError",
    "RetryPolicy",
    # Common utilities
    "run_command_safe",
    "setup_logging",
    "JobReporter",
]
