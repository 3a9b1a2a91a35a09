"""
Job-wide message channels: the status (progress) file and the error file.

The status file is what the web front end polls to show progress. The error
file collects short, user-safe summaries of errors and warnings and ends with
the job's exit code.
"""

import threading
from pathlib import Path
from typing import Optional, Union

from .common import timestamp
from .error_handling import ErrorHandler, error_handler

BACKEND_ISSUE_PREFIX = "ERROR: Issue on the server's backend side: "


class JobReporter:
    """Writes progress lines, error and warning summaries and the exit code."""

    def __init__(
        self,
        status_path: Union[str, Path],
        error_path: Union[str, Path],
        handler: Optional[ErrorHandler] = None,
    ):
        self.status_path = Path(status_path)
        self.error_path = Path(error_path)
        self.handler = handler or error_handler
        self._lock = threading.Lock()

    def start(self) -> None:
        """Truncate the error file at job start."""
        with self._lock:
            self.error_path.write_text("")

    def progress(self, message: str) -> None:
        self.handler.log_info(message.strip())
        self._append(self.status_path, message.rstrip("\n") + "\n")

    def error(self, detail: str, summary: Optional[str] = None) -> None:
        """Log the detailed text and file a backend-issue summary."""
        self.handler.log_error(f"{timestamp()}{detail.strip()}")
        text = summary if summary is not None else detail
        self._append(self.error_path, BACKEND_ISSUE_PREFIX + text.rstrip("\n") + "\n")

    def warning(self, detail: str, summary: Optional[str] = None) -> None:
        self.handler.log_warning(f"{timestamp()}{detail.strip()}")
        text = summary if summary is not None else detail
        self._append(self.error_path, text.rstrip("\n") + "\n")

    def finish(self, exit_code: int) -> None:
        """Record the job's exit code as the last line of the error file."""
        self._append(self.error_path, f"\n{exit_code}\n")

    def _append(self, path: Path, text: str) -> None:
        with self._lock:
            try:
                with open(path, "a") as f:
                    f.write(text)
            except OSError as e:
                self.handler.handle_error(e, {"file_path": str(path)})
