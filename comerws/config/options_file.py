"""
Job options file handling.

The web front end writes one options file per job as ``KEY = value`` lines.
The file is read, numeric options outside their allowed range are replaced by
defaults (each replacement produces a warning), and the corrected file is
written back in place; the submitted file is kept with an ``.org`` suffix.
The tools read the corrected file themselves, so unknown keys are preserved.
"""

import re
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from ..utils.error_handling import FileError, ValidationError

OPTION_LINE = re.compile(r"^\s*([A-Za-z_]\w*)\s*=\s*(\S+)")
ZERO_VALUE = re.compile(r"^0*\.?0+$")
ITERATIONS_VALUE = re.compile(r"^0*[1-9]\d*\s*$")
EVALUE_VALUE = re.compile(r"^\d*\.?\d*(?:[eE][+\-]?)?\d+\s*$")

# Job option keys used by the backend
COMER_DB = "comer_db"
COTHER_DB = "cother_db"
SEQUENCE_DB = "sequence_db"
HHSUITE_DB = "hhsuite_db"
HHSUITE_IN_USE = "hhsuite_in_use"
HHSUITE_NITERATIONS = "hhsuite_opt_niterations"
HHSUITE_EVALUE = "hhsuite_opt_evalue"
HMMER_IN_USE = "hmmer_in_use"
HMMER_NITERATIONS = "hmmer_opt_niterations"
HMMER_EVALUE = "hmmer_opt_evalue"
SS_WEIGHT = "SSSWGT"


@dataclass(frozen=True)
class OptionRule:
    """Allowed range and default of a numeric option."""

    name: str
    minimum: float
    maximum: float
    default: float

    def accepts(self, value: str) -> bool:
        try:
            number = float(value)
        except ValueError:
            return False
        return self.minimum <= number <= self.maximum


OPTION_RULES: Dict[str, OptionRule] = {
    rule.name: rule
    for rule in (
        OptionRule("EVAL", 0, 100, 10),
        OptionRule("NOHITS", 1, 2000, 700),
        OptionRule("NOALNS", 1, 2000, 700),
        OptionRule("ADJWGT", 0.001, 0.999, 0.33),
        OptionRule("CVSWGT", 0, 0.999, 0.15),
        OptionRule(SS_WEIGHT, 0, 0.999, 0.12),
        OptionRule("DDMSWGT", 0, 0.999, 0.2),
        OptionRule("LCFILTEREACH", 0, 1, 1),
        OptionRule("MINPP", 0, 0.999, 0.28),
        OptionRule(HHSUITE_NITERATIONS, 1, 4, 2),
        OptionRule(HHSUITE_EVALUE, 0, 1, 0.001),
        OptionRule(HMMER_NITERATIONS, 1, 4, 2),
        OptionRule(HMMER_EVALUE, 0, 1, 0.001),
    )
}


@dataclass
class JobOptions:
    """Validated contents of a job options file."""

    path: Optional[Path] = None
    values: Dict[str, str] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)
    ss_scoring: bool = True
    corrected_lines: List[str] = field(default_factory=list, repr=False)

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return self.values.get(key, default)

    def flag(self, key: str) -> bool:
        value = self.values.get(key, "0")
        try:
            return float(value) != 0
        except ValueError:
            return value.lower() in ("yes", "true", "on")

    def iterations(self, key: str) -> int:
        value = self.values.get(key)
        if value is None or not ITERATIONS_VALUE.match(value):
            raise ValidationError(
                f"Option {key} either undefined or invalid",
                field=key,
                value=value,
            )
        return int(value)

    def evalue(self, key: str) -> float:
        value = self.values.get(key)
        if value is None or not EVALUE_VALUE.match(value):
            raise ValidationError(
                f"Option {key} either undefined or invalid", field=key, value=value
            )
        return float(value)


def _default_text(rule: OptionRule) -> str:
    return f"{rule.default:g}"


def parse_options(lines: List[str]) -> JobOptions:
    """Validate option lines, returning the options and the corrected lines."""
    options = JobOptions()
    corrected = []
    for line in lines:
        match = OPTION_LINE.match(line)
        if match and not line.lstrip().startswith("#"):
            key, value = match.groups()
            rule = OPTION_RULES.get(key)
            if key == SS_WEIGHT and ZERO_VALUE.match(value):
                options.ss_scoring = False
            elif rule is not None and not rule.accepts(value):
                value = _default_text(rule)
                options.warnings.append(
                    f"WARNING: Disallowed values: Option {key} changed: "
                    f"{match.group(2)} -> {value}"
                )
                line = f"{key} = {value}\n"
            options.values[key] = value
        corrected.append(line)
    options.corrected_lines = corrected
    return options


def validate_options_file(path: Path) -> JobOptions:
    """
    Read, validate and rewrite a job options file.

    Args:
        path: Options file written by the front end

    Returns:
        Validated job options; replacements are listed in ``warnings``

    Raises:
        FileError: If the file cannot be read or rewritten
    """
    path = Path(path)
    try:
        with open(path) as f:
            lines = f.readlines()
    except OSError as e:
        raise FileError(
            f"Failed to open job options file: {e}",
            file_path=str(path),
            operation="read",
            summary="Failed to open job options file.",
        ) from e

    options = parse_options(lines)
    options.path = path

    try:
        shutil.move(str(path), f"{path}.org")
        with open(path, "w") as f:
            f.writelines(options.corrected_lines)
    except OSError as e:
        raise FileError(
            f"Failed to rewrite job options file: {e}",
            file_path=str(path),
            operation="write",
            summary="Failed to open job options file.",
        ) from e

    return options
