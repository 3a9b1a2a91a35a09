"""
Batch profile-profile search over the profiles of all succeeded queries.

The profiles are concatenated into one file and searched with COMER or COTHER
in a single run; the per-query result files are then matched back to their
queries by the order in which the profiles were concatenated.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Tuple
import glob
import logging

from comerws.config import constants as C
from comerws.config.job_config import JobConfiguration
from comerws.core.external_tools import CommandBuilder, ExternalToolRunner
from comerws.core.profile_files import concatenate_files, extract_warnings
from comerws.core.query_unit import ArtifactKind, QueryTable
from comerws.utils.error_handling import ComerWSError, ProcessingError

logger = logging.getLogger(__name__)


@dataclass
class SearchOutcome:
    """Result of the batch search."""

    profiles_file: Path
    output_dir: Path
    searched: int = 0
    matched: int = 0
    tool_warnings: List[str] = field(default_factory=list)
    missing: List[Tuple[str, str]] = field(default_factory=list)


class ProfileSearch:
    """Runs the job's batch COMER/COTHER search."""

    def __init__(self, config: JobConfiguration, runner: ExternalToolRunner,
                 job_dir: Path, job_name: str, search_log: Path):
        self.config = config
        self.runner = runner
        self.commands = CommandBuilder(config)
        self.job_dir = Path(job_dir)
        self.job_name = job_name
        self.search_log = Path(search_log)

    @property
    def label(self) -> str:
        return self.config.method.upper()

    def output_dir(self) -> Path:
        return self.job_dir / f"{self.job_name}__{self.config.method}_out"

    def run(self, table: QueryTable) -> SearchOutcome:
        """
        Search the profiles of the succeeded units.

        Result files are recorded as OUTPUT artifacts. A unit whose result
        file is missing gets a warning and keeps its status.

        Raises:
            ProcessingError: If there is nothing to search, the profiles
                cannot be combined, or the search fails after all attempts
        """
        units = table.succeeded()
        if not units:
            raise ProcessingError(
                "Making profiles for all queries failed",
                step="profile_search",
                summary="Making profiles for all queries failed. Please check your input.",
            )

        extension = C.TPRO_EXT if self.config.is_cother else C.PRO_EXT
        profiles_file = self.job_dir / f"{self.job_name}__nqries{len(table)}.{extension}"
        outcome = SearchOutcome(profiles_file=profiles_file, output_dir=self.output_dir())

        try:
            concatenate_files([unit.artifacts[ArtifactKind.PROFILE] for unit in units],
                              profiles_file)
        except (OSError, KeyError) as e:
            raise ProcessingError(
                f"Failed to combine profiles into one file: {e}",
                step="profile_search",
                summary="Combining profiles into one file failed.",
            ) from e

        invocation = self.commands.profile_search(
            profiles_file, self.config.profile_databases, outcome.output_dir,
            self.search_log,
        )
        try:
            self.runner.run(invocation)
        except ComerWSError as e:
            raise ProcessingError(
                f"Unable to conduct a {self.label} search: {e}",
                step="profile_search",
                summary=(
                    f"Unable to conduct a {self.label} search. If you submitted "
                    "profile(s) as query(-ies), please make sure they have correct format."
                ),
            ) from e

        outcome.tool_warnings = extract_warnings(self.search_log)
        outcome.searched = len(units)

        for position, unit in enumerate(units):
            pattern = (
                f"{glob.escape(str(outcome.output_dir))}/"
                f"{glob.escape(unit.name)}*__{position}.{C.OUT_EXT}"
            )
            matches = sorted(glob.glob(pattern))
            if not matches:
                detail = f"{self.label} results for query No.{unit.index} not found: {pattern}"
                summary = f"{self.label} results for query No.{unit.index} not found."
                unit.diagnostics.add_warning(detail, summary)
                outcome.missing.append((detail, summary))
                continue
            unit.artifacts[ArtifactKind.OUTPUT] = Path(matches[0])
            outcome.matched += 1

        logger.info(
            f"{self.label} search finished: {outcome.matched}/{outcome.searched} "
            "queries with results"
        )
        if outcome.matched == 0:
            raise ProcessingError(
                f"No {self.label} results for all queries",
                step="profile_search",
                summary=f"No {self.label} results for all queries.",
            )
        return outcome
