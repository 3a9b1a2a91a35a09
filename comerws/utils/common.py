"""
Utility functions for the comerws backend.

This module provides common utilities for secure subprocess execution
and logging.
"""

import logging
import subprocess
import shlex
from datetime import datetime
from typing import List, Optional, Union
from pathlib import Path

from .error_handling import error_handler, CommandError, FileError


def setup_logging(name: str, level: str = "INFO") -> logging.Logger:
    """
    Set up a logger with consistent formatting.

    Handlers already attached to the logger (such as the one installed by the
    global error handler) are set to the requested level as well.

    Args:
        name: Logger name
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, level.upper()))

    if not logger.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    for handler in logger.handlers:
        handler.setLevel(logger.level)

    return logger


def timestamp() -> str:
    """Time prefix used in job-level log lines."""
    return datetime.now().strftime("[%Y-%m-%d %H:%M:%S] ")


def run_command_safe(
    cmd: Union[str, List[str]],
    log_path: Union[str, Path],
    stdout_path: Optional[Union[str, Path]] = None,
    cwd: Optional[Union[str, Path]] = None,
    timeout: Optional[int] = None,
    append_log: bool = True,
) -> None:
    """
    Execute a command without a shell, sending its output to a log file.

    The command line is written to the log, prefixed with a timestamp, before
    the command runs. Standard error always goes to the log; standard output
    goes to ``stdout_path`` when given (truncated) and to the log otherwise.

    Args:
        cmd: Command to execute (string will be split safely)
        log_path: Log file receiving the command line and tool output
        stdout_path: Optional file capturing standard output
        cwd: Working directory for command execution
        timeout: Command timeout in seconds
        append_log: Append to the log instead of truncating it

    Raises:
        CommandError: If the command cannot be started, times out or exits
            with a non-zero status
        FileError: If the log or output file cannot be opened
    """
    if isinstance(cmd, str):
        cmd_list = shlex.split(cmd)
    else:
        cmd_list = [str(c) for c in cmd]

    if not cmd_list:
        raise CommandError("Command cannot be empty")

    command_str = shlex.join(cmd_list)
    error_handler.log_debug(f"Executing command: {command_str}")

    try:
        log = open(log_path, "a" if append_log else "w")
    except OSError as e:
        raise FileError(
            f"Cannot open log file: {e}", file_path=str(log_path), operation="open"
        ) from e

    with log:
        log.write(f"{timestamp()}{command_str}\n\n")
        log.flush()
        try:
            out = open(stdout_path, "w") if stdout_path else log
        except OSError as e:
            raise FileError(
                f"Cannot open output file: {e}",
                file_path=str(stdout_path),
                operation="open",
            ) from e
        try:
            result = subprocess.run(
                cmd_list,
                cwd=cwd,
                stdout=out,
                stderr=log,
                timeout=timeout,
            )
        except OSError as e:
            raise CommandError(
                f"Command could not be started: {e}", command=command_str
            ) from e
        except subprocess.TimeoutExpired as e:
            raise CommandError(
                f"Command timed out after {timeout} seconds", command=command_str
            ) from e
        finally:
            if out is not log:
                out.close()

    if result.returncode != 0:
        raise CommandError(
            f"Command failed with exit status {result.returncode}",
            command=command_str,
            return_code=result.returncode,
        )
