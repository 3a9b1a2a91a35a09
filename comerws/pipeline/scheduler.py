"""
Worker pool scheduling of query units.

Units are dispatched largest first onto a bounded pool of worker threads. A
slot is refilled as soon as any running unit completes, and results are
merged into the query table by the harvesting loop only.
"""

from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional
import logging
import threading
import traceback

from comerws.config.job_config import JobConfiguration
from comerws.core.query_unit import PhaseTimings, QueryTable, QueryUnit, UnitStatus
from comerws.pipeline.query_pipeline import QueryContext, QueryPipeline

logger = logging.getLogger(__name__)


@dataclass
class WorkerPlan:
    """Parallel worker allocation."""

    workers: int
    cpus_per_worker: int


@dataclass
class SchedulingReport:
    """Outcome of scheduling a query table."""

    total: int
    succeeded: int = 0
    failed: int = 0
    timing: PhaseTimings = field(default_factory=PhaseTimings)
    progress: List[str] = field(default_factory=list)

    @property
    def has_failures(self) -> bool:
        return self.failed > 0


def plan_workers(n_units: int, ncpus: int, multicore_threshold: int,
                 one_worker: bool = False) -> WorkerPlan:
    """
    Decide how many units run at once and how many CPUs each gets.

    Few queries run one at a time with all CPUs (the tools are multithreaded);
    many queries run one per CPU.
    """
    ncpus = max(1, ncpus)
    if one_worker or n_units <= multicore_threshold:
        return WorkerPlan(workers=1, cpus_per_worker=ncpus)
    return WorkerPlan(workers=ncpus, cpus_per_worker=1)


def format_progress(done: int, total: int, timing: PhaseTimings) -> str:
    """Progress line; a phase that took no time is left out of the breakdown."""
    spent = timing.search + timing.construction
    parts = []
    if timing.search > 0:
        parts.append(f"{round(timing.search * 100 / spent)}% MSA")
    if timing.construction > 0:
        parts.append(f"{round(timing.construction * 100 / spent)}% profile construction")
    message = f"  {done}/{total} queries done"
    if parts:
        message += f" (time distr.: {', '.join(parts)})"
    return message


class WorkerPoolScheduler:
    """Runs the pipeline of every pending unit on a bounded worker pool."""

    def __init__(
        self,
        config: JobConfiguration,
        pipeline: QueryPipeline,
        progress: Optional[Callable[[str], None]] = None,
    ):
        self.config = config
        self.pipeline = pipeline
        self.progress = progress or (lambda message: None)
        self._stop = threading.Event()

    def request_stop(self) -> None:
        """Refuse to launch further units; running ones finish normally."""
        self._stop.set()

    def run(self, table: QueryTable) -> SchedulingReport:
        """
        Process every pending unit of the table.

        Returns:
            Report with success/failure counts and cumulative phase timings;
            every unit of the table is Succeeded or Failed afterwards
        """
        pending = sorted(
            (unit for unit in table if unit.status is UnitStatus.PENDING),
            key=lambda unit: unit.size_bytes,
            reverse=True,
        )
        plan = plan_workers(
            len(pending), self.config.ncpus, self.config.multicore_threshold,
            self.config.one_worker,
        )
        logger.info(
            f"#queries= {len(pending)}  dedicated #workers= {plan.workers} "
            f"#cpus= {plan.cpus_per_worker}/wrk."
        )

        report = SchedulingReport(total=len(pending))
        valid = len(pending)
        last_decile = 0
        running: Dict[Future, QueryUnit] = {}
        queue = list(reversed(pending))

        with ThreadPoolExecutor(max_workers=plan.workers) as executor:
            while queue or running:
                while queue and len(running) < plan.workers and not self._stop.is_set():
                    unit = queue.pop()
                    future = self._launch(executor, unit, plan.cpus_per_worker)
                    if future is None:
                        report.failed += 1
                        valid -= 1
                    else:
                        running[future] = unit

                if not running:
                    if self._stop.is_set():
                        self._abandon(queue, report)
                        queue = []
                    continue

                done, _ = wait(running, return_when=FIRST_COMPLETED)
                for future in done:
                    unit = running.pop(future)
                    if self._harvest(future, unit, report):
                        report.succeeded += 1
                        decile = report.succeeded * 10 // valid
                        if decile > last_decile:
                            last_decile = decile
                            message = format_progress(
                                report.succeeded, report.total, report.timing
                            )
                            report.progress.append(message)
                            self.progress(message)
                    else:
                        report.failed += 1
                        valid -= 1

        logger.info(
            f"Scheduling finished: {report.succeeded} succeeded, {report.failed} failed"
        )
        return report

    def _launch(self, executor: ThreadPoolExecutor, unit: QueryUnit,
                ncpus: int) -> Optional[Future]:
        context = QueryContext.from_unit(unit)
        try:
            future = executor.submit(self.pipeline.run, context, ncpus)
        except RuntimeError as e:
            unit.mark_failed(
                f"Creation of thread {unit.index} (input {unit.index}) failed: {e}",
                f"Processing of query No.{unit.index} could not be started.",
            )
            logger.error(unit.diagnostics.error)
            return None
        unit.mark_running()
        return future

    def _harvest(self, future: Future, unit: QueryUnit, report: SchedulingReport) -> bool:
        try:
            result = future.result()
        except Exception as e:
            logger.error(f"Query No.{unit.index} terminated unexpectedly: {e}")
            logger.debug(traceback.format_exc())
            unit.mark_failed(
                f"Processing of query No.{unit.index} terminated unexpectedly: {e}",
                f"Processing of query No.{unit.index} failed.",
            )
            return False
        unit.apply(result)
        report.timing += result.timing
        return unit.status is UnitStatus.SUCCEEDED

    def _abandon(self, queue: List[QueryUnit], report: SchedulingReport) -> None:
        for unit in queue:
            unit.mark_failed(
                f"Job aborted before query No.{unit.index} was processed",
                f"Query No.{unit.index} was not processed: the job was aborted.",
            )
            report.failed += 1
