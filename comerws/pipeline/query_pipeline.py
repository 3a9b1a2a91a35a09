"""Per-query processing: from a query file to a profile ready for the batch search."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional
import logging
import os
import time

from comerws.config import constants as C
from comerws.config.job_config import JobConfiguration
from comerws.core.external_tools import CommandBuilder, ExternalToolRunner
from comerws.core.profile_files import (
    concatenate_files,
    profile_length,
    rewrite_profile_file_field,
    strip_secondary_structure,
)
from comerws.core.query_unit import (
    ArtifactKind,
    PhaseTimings,
    QueryFormat,
    QueryUnit,
    UnitFailure,
    UnitResult,
    UnitSuccess,
)
from comerws.utils.error_handling import ComerWSError, StageError

logger = logging.getLogger(__name__)

PROFILE_HINT = (
    "You might consider turning off secondary structure scoring (by setting "
    '"Weight of SS scores" to 0) or low-complexity filtering (by unchecking the '
    '"Invoke low-complexity filtering for each sequence in alignment" checkbox).'
)


class PipelineState(Enum):
    REFORMAT = "reformat"
    SEARCH = "search"
    MERGE = "merge"
    PROFILE = "profile_construct"
    COVARIANCE = "aux_construct"
    DISTANCES = "distance_profile"
    DONE = "done"


SEARCH_PHASE = (PipelineState.REFORMAT, PipelineState.SEARCH, PipelineState.MERGE)


@dataclass(frozen=True)
class QueryContext:
    """Read-only view of a unit handed to a worker."""

    index: int
    format: QueryFormat
    workdir: Path
    input_path: Path
    base_path: Path
    log_path: Path
    engine_flags: Dict[str, bool]

    @classmethod
    def from_unit(cls, unit: QueryUnit) -> "QueryContext":
        return cls(
            index=unit.index,
            format=unit.format,
            workdir=unit.workdir,
            input_path=unit.input_path,
            base_path=unit.base_path,
            log_path=unit.log_path,
            engine_flags=dict(unit.engine_flags),
        )

    def path(self, suffix: str, extension: str) -> Path:
        return Path(f"{self.base_path}{suffix}.{extension}")


@dataclass
class _QueryRun:
    ctx: QueryContext
    ncpus: int
    msa_input: Path
    artifacts: Dict[ArtifactKind, Path] = field(default_factory=dict)
    engine_flags: Dict[str, bool] = field(default_factory=dict)
    timing: PhaseTimings = field(default_factory=PhaseTimings)
    warnings: List[str] = field(default_factory=list)
    warning_summaries: List[str] = field(default_factory=list)
    search_msa: Optional[Path] = None
    query_file: Optional[Path] = None

    def warn(self, detail: str, summary: str) -> None:
        self.warnings.append(detail)
        self.warning_summaries.append(summary)


class QueryPipeline:
    """Runs the states of one query in order and reports a unit result."""

    def __init__(self, config: JobConfiguration, runner: ExternalToolRunner):
        self.config = config
        self.runner = runner
        self.commands = CommandBuilder(config)
        self._handlers = {
            PipelineState.REFORMAT: self._reformat,
            PipelineState.SEARCH: self._search,
            PipelineState.MERGE: self._merge,
            PipelineState.PROFILE: self._construct_profile,
            PipelineState.COVARIANCE: self._construct_covariance,
            PipelineState.DISTANCES: self._distance_profile,
        }

    def plan(self, fmt: QueryFormat) -> List[PipelineState]:
        """States a query of the given format goes through, ending in DONE."""
        config = self.config
        builds_profile = not config.no_profile
        states = []
        if fmt is QueryFormat.A3M:
            states.append(PipelineState.REFORMAT)
        if config.search_enabled and not fmt.is_profile:
            states.append(PipelineState.SEARCH)
            if config.combine_engines:
                states.append(PipelineState.MERGE)
        if fmt.is_profile or builds_profile:
            states.append(PipelineState.PROFILE)
        if config.is_cother and builds_profile:
            if not fmt.is_profile:
                states.append(PipelineState.COVARIANCE)
            if fmt is not QueryFormat.COTHER_PROFILE:
                states.append(PipelineState.DISTANCES)
        states.append(PipelineState.DONE)
        return states

    def run(self, ctx: QueryContext, ncpus: int) -> UnitResult:
        """
        Process one query.

        Args:
            ctx: Snapshot of the unit to process
            ncpus: CPU cores the tools of this query may use

        Returns:
            UnitSuccess, or UnitFailure carrying the first failing state's
            detailed and summary messages
        """
        run = _QueryRun(
            ctx=ctx,
            ncpus=ncpus,
            msa_input=ctx.input_path,
            engine_flags=dict(ctx.engine_flags),
        )
        try:
            for state in self.plan(ctx.format):
                if state is PipelineState.DONE:
                    break
                logger.debug(f"Query No.{ctx.index}: {state.value}")
                started = time.monotonic()
                try:
                    self._handlers[state](run)
                finally:
                    elapsed = time.monotonic() - started
                    if state in SEARCH_PHASE:
                        run.timing.search += elapsed
                    else:
                        run.timing.construction += elapsed
        except StageError as e:
            logger.debug(f"Query No.{ctx.index} failed at {e.stage}: {e.message}")
            return UnitFailure(
                index=ctx.index,
                error=e.message,
                error_summary=e.summary,
                artifacts=run.artifacts,
                timing=run.timing,
                engine_flags=run.engine_flags,
                warning="\n".join(run.warnings),
                warning_summary="\n".join(run.warning_summaries),
            )
        return UnitSuccess(
            index=ctx.index,
            artifacts=run.artifacts,
            timing=run.timing,
            engine_flags=run.engine_flags,
            warning="\n".join(run.warnings),
            warning_summary="\n".join(run.warning_summaries),
        )

    def _reformat(self, run: _QueryRun) -> None:
        ctx = run.ctx
        output = ctx.path(C.REFORMAT_SUFFIX, C.AFA_EXT)
        run.msa_input = output
        run.artifacts[ArtifactKind.MSA] = output
        if output.exists():
            return
        raw = Path(f"{output}.f")
        try:
            self.runner.run(self.commands.reformat_a3m(ctx.input_path, raw, ctx.log_path))
            strip_secondary_structure(raw, output)
        except (ComerWSError, OSError, ValueError) as e:
            raise StageError(
                f"Failed to reformat MSA No.{ctx.index}: '{ctx.input_path}': {e}",
                PipelineState.REFORMAT.value,
                f"Reformatting the MSA of query No.{ctx.index} failed. "
                "Please check your input.",
            ) from e

    def _search(self, run: _QueryRun) -> None:
        ctx = run.ctx
        combine = self.config.combine_engines
        for engine in self.config.engines:
            prefix = Path(f"{ctx.base_path}{engine.suffix}")
            done_file = Path(f"{prefix}.{C.PWFA_EXT if combine else C.AFA_EXT}")
            if not (run.engine_flags.get(engine.name) or done_file.exists()):
                invocation = self.commands.search_helper(
                    engine, run.msa_input, prefix, run.ncpus, ctx.log_path
                )
                try:
                    self.runner.run(invocation)
                except ComerWSError as e:
                    raise StageError(
                        f"Failed to make MSA No.{ctx.index} by {engine.name} "
                        f"for '{ctx.input_path}': {e}",
                        PipelineState.SEARCH.value,
                        f"Building an MSA by searching for query No.{ctx.index} "
                        "failed. Please check your input.",
                    ) from e
                run.engine_flags[engine.name] = True
            run.query_file = Path(f"{prefix}.{C.QRY_EXT}")
            run.search_msa = Path(f"{prefix}.{C.AFA_EXT}")
        run.artifacts[ArtifactKind.MSA] = run.search_msa

    def _merge(self, run: _QueryRun) -> None:
        ctx = run.ctx
        merged = ctx.path(C.RESULT_SUFFIX, C.AFA_EXT)
        run.search_msa = merged
        if merged.exists():
            run.artifacts[ArtifactKind.MSA] = merged
            return
        pairwise = ctx.path(C.RESULT_SUFFIX, C.PWFA_EXT)
        sources = [
            Path(f"{ctx.base_path}{engine.suffix}.{C.PWFA_EXT}")
            for engine in self.config.engines
        ]
        try:
            concatenate_files(sources, pairwise)
            self.runner.run(
                self.commands.pwfa2msa(pairwise, merged, run.query_file, ctx.log_path)
            )
        except (ComerWSError, OSError) as e:
            raise StageError(
                f"Failed to combine MSAs for query No.{ctx.index}: '{ctx.input_path}': {e}",
                PipelineState.MERGE.value,
                f"Combining MSAs obtained for query No.{ctx.index} failed.",
            ) from e
        run.artifacts[ArtifactKind.MSA] = merged

    def _construct_profile(self, run: _QueryRun) -> None:
        ctx = run.ctx
        if ctx.format.is_profile:
            profile = ctx.path(C.RESULT_SUFFIX, ctx.format.extension)
            try:
                rewrite_profile_file_field(ctx.input_path, profile, ctx.input_path.name)
            except ComerWSError as e:
                raise StageError(
                    f"Failed to preprocess profile No.{ctx.index}: '{ctx.input_path}': {e}",
                    PipelineState.PROFILE.value,
                    f"Profile preprocessing for query No.{ctx.index} failed. "
                    "Please check your input.",
                ) from e
            run.artifacts[ArtifactKind.PROFILE] = profile
            return

        msa = run.search_msa if self.config.search_enabled else run.msa_input
        run.artifacts[ArtifactKind.MSA] = msa
        self._calculate_neff(run, msa)

        profile = ctx.path(C.RESULT_SUFFIX, C.PRO_EXT)
        if not profile.exists():
            if not msa.exists():
                raise StageError(
                    f"MSA file for profile construction not found: '{msa}'",
                    PipelineState.PROFILE.value,
                    "An MSA file for profile construction not found.",
                )
            try:
                self.runner.run(self.commands.makepro(msa, profile, ctx.log_path))
            except ComerWSError as e:
                raise StageError(
                    f"Failed to construct profile No.{ctx.index} by makepro for '{msa}': {e}",
                    PipelineState.PROFILE.value,
                    f"Constructing a profile for query No.{ctx.index} failed. "
                    f"Please check your input. {PROFILE_HINT}",
                ) from e
        run.artifacts[ArtifactKind.PROFILE] = profile

    def _calculate_neff(self, run: _QueryRun, msa: Path) -> None:
        ctx = run.ctx
        neff = Path(f"{msa}.{C.NEFF_EXT}")
        if not neff.exists():
            try:
                self.runner.run(self.commands.neff(msa, neff, ctx.log_path))
            except (ComerWSError, OSError) as e:
                neff.unlink(missing_ok=True)
                run.warn(
                    f"Failed to calculate Neff for query No.{ctx.index} MSA '{msa}': {e}",
                    f"WARNING: Calculating Neff for query No.{ctx.index} failed.",
                )
                return
        run.artifacts[ArtifactKind.NEFF] = neff

    def _construct_covariance(self, run: _QueryRun) -> None:
        ctx = run.ctx
        cov = ctx.path(C.RESULT_SUFFIX, C.COV_EXT)
        if not cov.exists():
            profile = run.artifacts[ArtifactKind.PROFILE]
            try:
                length = profile_length(profile)
            except OSError as e:
                logger.warning(f"Unable to open profile '{profile}': {e}")
                length = 0
            limit = self.config.max_seq_len_cother
            if length > limit:
                raise StageError(
                    f"Query No.{ctx.index} length exceeds max allowed ({limit})",
                    PipelineState.COVARIANCE.value,
                    f"Length of query No.{ctx.index} exceeds max allowed: "
                    f"{length} > {limit}. Please check your input.",
                )
            msa = run.artifacts[ArtifactKind.MSA]
            try:
                self.runner.run(self.commands.makecov(msa, cov, ctx.log_path))
            except ComerWSError as e:
                raise StageError(
                    f"Failed to make xcov file No.{ctx.index} by makecov for '{msa}': {e}",
                    PipelineState.COVARIANCE.value,
                    f"Constructing an xcov file for query No.{ctx.index} failed. "
                    "Please check your input.",
                ) from e
        run.artifacts[ArtifactKind.COVARIANCE] = cov

    def _distance_profile(self, run: _QueryRun) -> None:
        ctx = run.ctx
        stage = PipelineState.DISTANCES.value
        profile = run.artifacts.get(ArtifactKind.PROFILE)
        if profile is None or not profile.exists():
            raise StageError(
                f"Profile No.{ctx.index} not found: '{profile}'",
                stage,
                f"Profile No.{ctx.index} not found.",
            )
        name = profile.stem
        cov = profile.parent / f"{name}.{C.COV_EXT}"
        cother_profile = profile.parent / f"{name}.{C.TPRO_EXT}"
        if cother_profile.exists():
            run.artifacts[ArtifactKind.PROFILE] = cother_profile
            return
        if not cov.exists():
            raise StageError(
                f"Xcov file No.{ctx.index} not found: '{cov}'",
                stage,
                f"Xcov file No.{ctx.index} not found "
                "(Query in COMER rather than COTHER format?).",
            )
        msa = run.artifacts.get(ArtifactKind.MSA)
        if msa is None or not msa.exists():
            raise StageError(
                f"MSA file No.{ctx.index} not found: '{msa}'",
                stage,
                f"MSA file No.{ctx.index} not found.",
            )

        subdir = ctx.workdir / f"ropius0_{ctx.index}"
        msa_copy = profile.parent / name
        try:
            subdir.mkdir(exist_ok=True)
            _link(msa, msa_copy)
            _link(profile, subdir / profile.name)
            _link(cov, subdir / cov.name)
        except OSError as e:
            raise StageError(
                f"Failed to prepare distance prediction for query No.{ctx.index}: {e}",
                stage,
                "Creating a directory or link failed.",
            ) from e

        try:
            self.runner.run(self.commands.distopred(msa_copy, subdir, ctx.log_path))
        except ComerWSError as e:
            raise StageError(
                f"Failed to predict distances for query No.{ctx.index}: '{msa_copy}': {e}",
                stage,
                f"Distance prediction for query No.{ctx.index} failed.",
            ) from e

        predictions = subdir / f"{name}{C.PREDICTED_DISTANCES_SUFFIX}"
        if not predictions.exists():
            raise StageError(
                f"Distance predictions for query No.{ctx.index} not found: '{predictions}'",
                stage,
                f"Distance predictions for query No.{ctx.index} not found.",
            )
        try:
            self.runner.run(
                self.commands.adddist(predictions, profile, cother_profile, ctx.log_path)
            )
        except ComerWSError as e:
            raise StageError(
                f"Failed to incorporate distance predictions for query No.{ctx.index}: {e}",
                stage,
                f"Incorporation of distance predictions for query No.{ctx.index} failed.",
            ) from e
        run.artifacts[ArtifactKind.PROFILE] = cother_profile


def _link(source: Path, link: Path) -> None:
    if link.is_symlink() or link.exists():
        return
    os.symlink(os.path.abspath(source), link)
