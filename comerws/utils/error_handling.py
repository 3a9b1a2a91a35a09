"""
Error handling framework for the comerws backend.

This module provides structured error handling, logging, and recovery mechanisms
for the search job. Every error carries a detailed message meant for the
backend logs and a short summary that is safe to show to the submitter.
"""

import logging
import time
import traceback
import sys
from dataclasses import dataclass, field
from typing import Optional, Dict, Any, Callable, Tuple, TypeVar, FrozenSet

T = TypeVar("T")


class ComerWSError(Exception):
    """Base exception for comerws errors."""

    def __init__(
        self,
        message: str,
        error_code: str = "COMERWS_ERROR",
        context: Optional[Dict[str, Any]] = None,
        summary: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.context = context or {}
        self.summary = summary or message

    def __str__(self) -> str:
        context_str = f" (Context: {self.context})" if self.context else ""
        return f"[{self.error_code}] {self.message}{context_str}"


class ValidationError(ComerWSError):
    """Configuration or option validation error."""

    def __init__(
        self, message: str, field: Optional[str] = None, value: Optional[Any] = None
    ):
        context = {}
        if field:
            context["field"] = field
        if value is not None:
            context["value"] = str(value)
        super().__init__(message, "VALIDATION_ERROR", context)


class ProcessingError(ComerWSError):
    """Processing pipeline error."""

    def __init__(
        self,
        message: str,
        step: Optional[str] = None,
        input_file: Optional[str] = None,
        summary: Optional[str] = None,
    ):
        context = {}
        if step:
            context["step"] = step
        if input_file:
            context["input_file"] = input_file
        super().__init__(message, "PROCESSING_ERROR", context, summary)


class CommandError(ComerWSError):
    """External command execution error."""

    def __init__(
        self,
        message: str,
        command: Optional[str] = None,
        return_code: Optional[int] = None,
    ):
        context = {}
        if command:
            context["command"] = command
        if return_code is not None:
            context["return_code"] = return_code
        super().__init__(message, "COMMAND_ERROR", context)
        self.command = command
        self.return_code = return_code


class FileError(ComerWSError):
    """File operation error."""

    def __init__(
        self,
        message: str,
        file_path: Optional[str] = None,
        operation: Optional[str] = None,
        summary: Optional[str] = None,
    ):
        context = {}
        if file_path:
            context["file_path"] = file_path
        if operation:
            context["operation"] = operation
        super().__init__(message, "FILE_ERROR", context, summary)


class InputError(ComerWSError):
    """The batch input cannot be turned into queries; fatal for the job."""

    def __init__(self, message: str, summary: Optional[str] = None):
        super().__init__(message, "INPUT_ERROR", None, summary)


class ArchiveError(ComerWSError):
    """A primary file could not be written to the results archive."""

    def __init__(
        self, message: str, file_path: Optional[str] = None, summary: Optional[str] = None
    ):
        context = {"file_path": file_path} if file_path else None
        super().__init__(message, "ARCHIVE_ERROR", context, summary)


class StageError(ComerWSError):
    """A state of the per-query pipeline failed."""

    def __init__(self, message: str, stage: str, summary: str):
        super().__init__(message, "STAGE_ERROR", {"stage": stage}, summary)
        self.stage = stage


class ErrorHandler:
    """Centralized error handling and logging."""

    def __init__(self, logger_name: str = "comerws", log_level: str = "INFO"):
        self.logger = self._setup_logger(logger_name, log_level)
        self.error_counts: Dict[str, int] = {}

    def _setup_logger(self, name: str, level: str) -> logging.Logger:
        """Set up logger with structured formatting."""
        logger = logging.getLogger(name)
        logger.setLevel(getattr(logging, level.upper()))

        if not logger.handlers:
            # Console handler
            console_handler = logging.StreamHandler(sys.stderr)
            console_handler.setLevel(logging.WARNING)

            formatter = logging.Formatter(
                "%(asctime)s - %(name)s - %(levelname)s - %(filename)s:%(lineno)d - %(message)s"
            )
            console_handler.setFormatter(formatter)
            logger.addHandler(console_handler)

        return logger

    def handle_error(
        self, error: Exception, context: Optional[Dict[str, Any]] = None
    ) -> None:
        """Handle an error with logging and context."""
        error_type = type(error).__name__

        self.error_counts[error_type] = self.error_counts.get(error_type, 0) + 1

        if isinstance(error, ComerWSError):
            error_msg = str(error)
        else:
            error_msg = f"{error_type}: {str(error)}"

        if context:
            error_msg += f" | Additional context: {context}"

        self.logger.error(error_msg)

        if self.logger.level <= logging.DEBUG:
            self.logger.debug(traceback.format_exc())

    def log_error(self, message: str, context: Optional[Dict[str, Any]] = None) -> None:
        """Log error message."""
        self.logger.error(self._format(message, context))

    def log_info(self, message: str, context: Optional[Dict[str, Any]] = None) -> None:
        """Log informational message."""
        self.logger.info(self._format(message, context))

    def log_warning(
        self, message: str, context: Optional[Dict[str, Any]] = None
    ) -> None:
        """Log warning message."""
        self.logger.warning(self._format(message, context))

    def log_debug(self, message: str, context: Optional[Dict[str, Any]] = None) -> None:
        """Log debug message."""
        self.logger.debug(self._format(message, context))

    @staticmethod
    def _format(message: str, context: Optional[Dict[str, Any]]) -> str:
        if context:
            return f"{message} | Context: {context}"
        return message


# Global error handler instance
error_handler = ErrorHandler()


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry with backoff for tools prone to transient failures.

    ``max_attempts`` counts the first call. The delay before attempt ``k``
    (k >= 2) is ``delay * backoff ** (k - 2)`` seconds.
    """

    max_attempts: int = 3
    delay: float = 2.0
    backoff: float = 1.0
    tools: FrozenSet[str] = field(default_factory=lambda: frozenset({"comer", "cother"}))

    def applies_to(self, tool: str) -> bool:
        return tool in self.tools

    def delays(self):
        wait = self.delay
        for _ in range(max(self.max_attempts - 1, 0)):
            yield wait
            wait *= self.backoff


def call_with_retry(
    func: Callable[[], T],
    policy: RetryPolicy,
    retry_on: Tuple[type, ...] = (CommandError,),
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Call ``func`` until it succeeds or the policy is exhausted.

    Args:
        func: Zero-argument callable to invoke
        policy: Retry policy (attempt count and delays)
        retry_on: Exception types that trigger another attempt
        sleep: Sleep function, replaceable in tests

    Returns:
        Result of the first successful call

    Raises:
        The exception of the last failed attempt
    """
    delays = list(policy.delays())
    for attempt in range(len(delays) + 1):
        try:
            return func()
        except retry_on as e:
            if attempt < len(delays):
                error_handler.log_warning(
                    f"Attempt {attempt + 1} failed, retrying in {delays[attempt]}s",
                    context={"error": str(e)},
                )
                sleep(delays[attempt])
            else:
                error_handler.log_error(
                    f"All {attempt + 1} attempts failed",
                    context={"error": str(e)},
                )
                raise
    raise AssertionError("unreachable")
