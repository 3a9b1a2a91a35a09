"""
Query units: one per record of the batch input.

A ``QueryUnit`` tracks a query through Pending -> Running -> Succeeded or
Failed. Units live in a ``QueryTable`` (a dense list indexed by query number)
which is created by the input segmenter and updated only by the scheduler's
harvesting loop, which merges the ``UnitSuccess``/``UnitFailure`` results
produced by the per-query pipelines.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Union

from ..config import constants as C
from ..utils.error_handling import ProcessingError


class QueryFormat(Enum):
    """Detected format of a query record, valued by its file extension."""

    STOCKHOLM_MSA = C.STO_EXT
    ALIGNED_FASTA = C.AFA_EXT
    PLAIN_FASTA = C.FAS_EXT
    A3M = C.A3M_EXT
    COMER_PROFILE = C.PRO_EXT
    COTHER_PROFILE = C.TPRO_EXT

    @property
    def extension(self) -> str:
        return self.value

    @property
    def is_profile(self) -> bool:
        return self in (QueryFormat.COMER_PROFILE, QueryFormat.COTHER_PROFILE)

    @property
    def description(self) -> str:
        return _DESCRIPTIONS[self]


_DESCRIPTIONS = {
    QueryFormat.STOCKHOLM_MSA: "MSA in STOCKHOLM format",
    QueryFormat.ALIGNED_FASTA: "MSA in aligned FASTA format",
    QueryFormat.PLAIN_FASTA: "sequence in FASTA format",
    QueryFormat.A3M: "MSA in A3M format",
    QueryFormat.COMER_PROFILE: "COMER profile",
    QueryFormat.COTHER_PROFILE: "COTHER profile",
}


class UnitStatus(Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (UnitStatus.SUCCEEDED, UnitStatus.FAILED)


class ArtifactKind(Enum):
    MSA = "msa"
    PROFILE = "profile"
    COVARIANCE = "covariance"
    NEFF = "neff"
    OUTPUT = "output"


@dataclass
class Diagnostics:
    """Detailed and user-facing error/warning texts of a unit.

    The first error recorded is kept; warnings accumulate.
    """

    error: str = ""
    error_summary: str = ""
    warning: str = ""
    warning_summary: str = ""

    def set_error(self, detail: str, summary: str) -> None:
        if not self.error:
            self.error = detail
            self.error_summary = summary

    def add_warning(self, detail: str, summary: str) -> None:
        if not detail and not summary:
            return
        self.warning = "\n".join(filter(None, (self.warning, detail)))
        self.warning_summary = "\n".join(filter(None, (self.warning_summary, summary)))


@dataclass
class PhaseTimings:
    """Seconds spent searching for homologs and constructing profiles."""

    search: float = 0.0
    construction: float = 0.0

    def __iadd__(self, other: "PhaseTimings") -> "PhaseTimings":
        self.search += other.search
        self.construction += other.construction
        return self


@dataclass
class UnitSuccess:
    index: int
    artifacts: Dict[ArtifactKind, Path] = field(default_factory=dict)
    timing: PhaseTimings = field(default_factory=PhaseTimings)
    engine_flags: Dict[str, bool] = field(default_factory=dict)
    warning: str = ""
    warning_summary: str = ""


@dataclass
class UnitFailure:
    index: int
    error: str
    error_summary: str
    artifacts: Dict[ArtifactKind, Path] = field(default_factory=dict)
    timing: PhaseTimings = field(default_factory=PhaseTimings)
    engine_flags: Dict[str, bool] = field(default_factory=dict)
    warning: str = ""
    warning_summary: str = ""


UnitResult = Union[UnitSuccess, UnitFailure]


@dataclass
class QueryUnit:
    """One query of a job and everything produced for it."""

    index: int
    format: QueryFormat
    workdir: Path
    input_path: Path
    base_path: Path
    log_path: Path
    size_bytes: int
    status: UnitStatus = UnitStatus.PENDING
    artifacts: Dict[ArtifactKind, Path] = field(default_factory=dict)
    diagnostics: Diagnostics = field(default_factory=Diagnostics)
    engine_flags: Dict[str, bool] = field(default_factory=dict)
    timing: PhaseTimings = field(default_factory=PhaseTimings)

    @property
    def name(self) -> str:
        return self.base_path.name

    def mark_running(self) -> None:
        self._transition(UnitStatus.PENDING, UnitStatus.RUNNING)

    def mark_succeeded(self) -> None:
        self._transition(UnitStatus.RUNNING, UnitStatus.SUCCEEDED)

    def mark_failed(self, detail: str, summary: str) -> None:
        """Fail a pending or running unit; the first error is kept."""
        if self.status.is_terminal:
            raise ProcessingError(
                f"Query No.{self.index} is already {self.status.value}",
                step="mark_failed",
            )
        self.diagnostics.set_error(detail, summary)
        self.status = UnitStatus.FAILED

    def apply(self, result: UnitResult) -> None:
        """Merge a pipeline result into this (running) unit."""
        if result.index != self.index:
            raise ProcessingError(
                f"Result of query No.{result.index} applied to query No.{self.index}",
                step="apply",
            )
        self.artifacts.update(result.artifacts)
        self.engine_flags.update(result.engine_flags)
        self.timing = result.timing
        self.diagnostics.add_warning(result.warning, result.warning_summary)
        if isinstance(result, UnitFailure):
            self.mark_failed(result.error, result.error_summary)
        else:
            self.mark_succeeded()

    def artifact(self, kind: ArtifactKind) -> Optional[Path]:
        return self.artifacts.get(kind)

    def _transition(self, expected: UnitStatus, new: UnitStatus) -> None:
        if self.status is not expected:
            raise ProcessingError(
                f"Query No.{self.index}: invalid transition "
                f"{self.status.value} -> {new.value}",
                step="status",
            )
        self.status = new


class QueryTable:
    """Dense, index-addressed collection of a job's query units."""

    def __init__(self, units: Optional[List[QueryUnit]] = None):
        self._units: List[QueryUnit] = []
        for unit in units or []:
            self.append(unit)

    def append(self, unit: QueryUnit) -> None:
        if unit.index != len(self._units):
            raise ProcessingError(
                f"Query index {unit.index} does not follow {len(self._units) - 1}",
                step="query_table",
            )
        self._units.append(unit)

    def __getitem__(self, index: int) -> QueryUnit:
        return self._units[index]

    def __len__(self) -> int:
        return len(self._units)

    def __iter__(self) -> Iterator[QueryUnit]:
        return iter(self._units)

    def with_status(self, status: UnitStatus) -> List[QueryUnit]:
        return [unit for unit in self._units if unit.status is status]

    def succeeded(self) -> List[QueryUnit]:
        return self.with_status(UnitStatus.SUCCEEDED)

    def failed(self) -> List[QueryUnit]:
        return self.with_status(UnitStatus.FAILED)

    def all_terminal(self) -> bool:
        return all(unit.status.is_terminal for unit in self._units)
