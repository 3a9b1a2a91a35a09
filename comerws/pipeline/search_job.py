"""
Search job orchestration.

A job distributes its input into query units, processes them on the worker
pool, runs the batch profile search over the succeeded units and delivers the
results list and archive. Unit failures are reported and isolated; only
job-level faults stop the job, and the results list and archive are produced
whenever the input could be distributed.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional
import logging

from comerws.config.job_config import JobConfiguration, resolve_job_configuration
from comerws.config.options_file import JobOptions, validate_options_file
from comerws.core.external_tools import ExternalToolRunner
from comerws.core.input_segmenter import InputSegmenter
from comerws.core.query_unit import QueryTable
from comerws.pipeline.profile_search import ProfileSearch
from comerws.pipeline.query_pipeline import QueryPipeline
from comerws.pipeline.result_aggregator import ResultAggregator
from comerws.pipeline.scheduler import SchedulingReport, WorkerPoolScheduler
from comerws.utils.error_handling import ComerWSError, ProcessingError
from comerws.utils.job_messages import JobReporter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class JobPaths:
    """Files of one job; defaults are derived from the input file name."""

    input_file: Path
    status_file: Path
    error_file: Path
    search_log: Path
    manifest: Path
    archive: Path
    summary: Path
    options_file: Optional[Path] = None

    @property
    def job_dir(self) -> Path:
        return self.input_file.parent

    @property
    def job_name(self) -> str:
        return self.input_file.stem

    @classmethod
    def for_input(cls, input_file: Path, method: str = "comer",
                  options_file: Optional[Path] = None, **overrides) -> "JobPaths":
        input_file = Path(input_file)
        base = input_file.parent / input_file.stem
        out = f"{base}__{method}_out"
        paths = {
            "status_file": Path(f"{base}.status"),
            "error_file": Path(f"{base}.err"),
            "search_log": Path(f"{out}.log"),
            "manifest": Path(f"{out}.lst"),
            "archive": Path(f"{out}.tar.gz"),
            "summary": Path(f"{out}.summary.tsv"),
        }
        paths.update({key: Path(value) for key, value in overrides.items() if value})
        return cls(input_file=input_file, options_file=options_file, **paths)


class SearchJob:
    """Runs one configured job end to end."""

    def __init__(
        self,
        paths: JobPaths,
        config: JobConfiguration,
        reporter: JobReporter,
        runner: Optional[ExternalToolRunner] = None,
    ):
        self.paths = paths
        self.config = config
        self.reporter = reporter
        self.runner = runner or ExternalToolRunner(config.retry)
        self.scheduler = WorkerPoolScheduler(
            config, QueryPipeline(config, self.runner), progress=reporter.progress
        )

    def run(self) -> int:
        """
        Execute the job.

        Returns:
            Exit code: 0 on success, 1 when the job failed
        """
        self.reporter.progress("Distributing input queries...")
        try:
            segmentation = InputSegmenter(
                self.paths.input_file, self.config.max_queries
            ).segment()
        except ComerWSError as e:
            self.reporter.error(e.message, e.summary)
            return 1

        for warning in segmentation.warnings:
            self.reporter.warning(warning, f"\nWARNING: {warning}\n")
        table = segmentation.table
        self.reporter.progress(segmentation.info_message)
        self.reporter.progress(f"Processing {len(table)} queries...")

        report = self.scheduler.run(table)
        self._report_units(table)

        exit_code = 0
        if report.succeeded == 0:
            self.reporter.error(
                "Making profiles for all queries failed",
                "Making profiles for all queries failed. Please check your input.",
            )
            exit_code = 1
        elif not (self.config.no_search or self.config.no_profile):
            exit_code = self._search(table)

        if not self._aggregate(table):
            exit_code = 1
        self._log_summary(report)
        self.reporter.progress("Finished.")
        return exit_code

    def _search(self, table: QueryTable) -> int:
        self.reporter.progress(f"Running the {self.config.method.upper()} search...")
        search = ProfileSearch(
            self.config, self.runner, self.paths.job_dir, self.paths.job_name,
            self.paths.search_log,
        )
        try:
            outcome = search.run(table)
        except ProcessingError as e:
            self.reporter.error(e.message, e.summary)
            return 1
        if outcome.tool_warnings:
            text = (
                f"\nWarnings from the {search.label} search:\n\n"
                + "".join(outcome.tool_warnings) + "\n"
            )
            self.reporter.warning(text, text)
        for detail, summary in outcome.missing:
            self.reporter.warning(detail, summary)
        return 0

    def _aggregate(self, table: QueryTable) -> bool:
        self.reporter.progress("Packaging results...")
        aggregator = ResultAggregator(
            self.paths.job_dir, self.paths.manifest, self.paths.archive,
            self.paths.summary,
        )
        try:
            result = aggregator.aggregate(
                table, self.paths.search_log, self.paths.status_file,
                self.paths.error_file,
            )
        except ComerWSError as e:
            self.reporter.error(e.message, e.summary)
            return False
        for message in result.secondary_errors:
            self.reporter.error(message, "Failed to archive some of the results files.")
        return True

    def _report_units(self, table: QueryTable) -> None:
        for unit in table:
            diagnostics = unit.diagnostics
            if diagnostics.error:
                self.reporter.error(diagnostics.error, diagnostics.error_summary)
            elif diagnostics.warning or diagnostics.warning_summary:
                self.reporter.warning(diagnostics.warning, diagnostics.warning_summary)

    def _log_summary(self, report: SchedulingReport) -> None:
        logger.info(
            f"Job {self.paths.job_name}: {report.succeeded}/{report.total} queries "
            f"processed, {report.failed} failed"
        )


def prepare_configuration(
    paths: JobPaths,
    settings: Dict[str, Any],
    method: str,
    no_profile: bool = False,
    no_search: bool = False,
    reporter: Optional[JobReporter] = None,
) -> JobConfiguration:
    """Validate the job options file and resolve the job configuration."""
    options = (
        validate_options_file(paths.options_file)
        if paths.options_file is not None
        else JobOptions()
    )
    config, warnings = resolve_job_configuration(
        settings, options, method=method, no_profile=no_profile, no_search=no_search
    )
    if reporter is not None:
        for warning in warnings:
            reporter.warning(warning, f"\n{warning}\n")
    return config


def run_search_job(
    paths: JobPaths,
    settings: Dict[str, Any],
    method: str = "comer",
    no_profile: bool = False,
    no_search: bool = False,
    runner: Optional[ExternalToolRunner] = None,
) -> int:
    """
    Configure and run a job, recording its exit code in the error file.

    Returns:
        Exit code: 0 on success, 1 on failure
    """
    reporter = JobReporter(paths.status_file, paths.error_file)
    reporter.start()
    try:
        config = prepare_configuration(
            paths, settings, method, no_profile, no_search, reporter
        )
    except ComerWSError as e:
        reporter.error(e.message, e.summary)
        reporter.finish(1)
        return 1

    exit_code = SearchJob(paths, config, reporter, runner).run()
    reporter.finish(exit_code)
    return exit_code
