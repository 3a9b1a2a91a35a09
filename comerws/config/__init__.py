"""
Configuration module for the comerws backend.
"""

from .job_config import (
    EngineSettings,
    JobConfiguration,
    ToolPaths,
    load_backend_settings,
    resolve_job_configuration,
)
from .options_file import JobOptions, validate_options_file

__all__ = [
    "EngineSettings",
    "JobConfiguration",
    "JobOptions",
    "ToolPaths",
    "load_backend_settings",
    "resolve_job_configuration",
    "validate_options_file",
]
