"""
Tests for worker pool scheduling of query units.
"""

import threading
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from comerws.core.query_unit import (
    PhaseTimings,
    QueryFormat,
    QueryTable,
    QueryUnit,
    UnitFailure,
    UnitStatus,
    UnitSuccess,
)
from comerws.pipeline.scheduler import (
    WorkerPoolScheduler,
    format_progress,
    plan_workers,
)
from comerws.test.conftest import make_config


class StubPipeline:
    """Pipeline double that records call order and peak concurrency."""

    def __init__(self, failing=(), raising=(), delay=0.0, on_start=None):
        self.failing = set(failing)
        self.raising = set(raising)
        self.delay = delay
        self.on_start = on_start
        self.order = []
        self.ncpus = []
        self.active = 0
        self.peak = 0
        self._lock = threading.Lock()

    def run(self, ctx, ncpus):
        with self._lock:
            self.order.append(ctx.index)
            self.ncpus.append(ncpus)
            self.active += 1
            self.peak = max(self.peak, self.active)
        try:
            if self.on_start:
                self.on_start(ctx.index)
            time.sleep(self.delay)
            if ctx.index in self.raising:
                raise RuntimeError("worker crashed")
            timing = PhaseTimings(search=3.0, construction=1.0)
            if ctx.index in self.failing:
                return UnitFailure(ctx.index, "makepro failed", "Profile failed.", timing=timing)
            return UnitSuccess(ctx.index, timing=timing)
        finally:
            with self._lock:
                self.active -= 1


def make_table(tmp_path, sizes):
    table = QueryTable()
    for index, size in enumerate(sizes):
        base = tmp_path / f"job__{index}" / f"job__{index}"
        table.append(
            QueryUnit(
                index=index,
                format=QueryFormat.PLAIN_FASTA,
                workdir=base.parent,
                input_path=base.with_suffix(".fa"),
                base_path=base,
                log_path=base.with_suffix(".log"),
                size_bytes=size,
            )
        )
    return table


class TestPlanWorkers:
    def test_few_queries_share_all_cpus(self):
        plan = plan_workers(3, ncpus=4, multicore_threshold=6)
        assert (plan.workers, plan.cpus_per_worker) == (1, 4)

    def test_many_queries_one_cpu_each(self):
        plan = plan_workers(20, ncpus=4, multicore_threshold=6)
        assert (plan.workers, plan.cpus_per_worker) == (4, 1)

    def test_one_worker_forced(self):
        plan = plan_workers(20, ncpus=4, multicore_threshold=6, one_worker=True)
        assert (plan.workers, plan.cpus_per_worker) == (1, 4)

    def test_at_least_one_cpu(self):
        assert plan_workers(1, ncpus=0, multicore_threshold=6).cpus_per_worker == 1


def test_format_progress():
    message = format_progress(3, 10, PhaseTimings(search=3.0, construction=1.0))
    assert message == "  3/10 queries done (time distr.: 75% MSA, 25% profile construction)"


def test_format_progress_without_timing():
    assert format_progress(1, 1, PhaseTimings()) == "  1/1 queries done"


def test_format_progress_omits_idle_phase():
    assert format_progress(2, 4, PhaseTimings(construction=5.0)) == (
        "  2/4 queries done (time distr.: 100% profile construction)"
    )
    assert format_progress(2, 4, PhaseTimings(search=1.0)) == (
        "  2/4 queries done (time distr.: 100% MSA)"
    )


class TestWorkerPoolScheduler:
    def test_largest_units_first(self, tmp_path):
        table = make_table(tmp_path, [10, 500, 20, 300])
        pipeline = StubPipeline()
        WorkerPoolScheduler(make_config(ncpus=1), pipeline).run(table)
        assert pipeline.order == [1, 3, 2, 0]

    def test_all_units_terminal(self, tmp_path):
        table = make_table(tmp_path, [5] * 12)
        pipeline = StubPipeline(failing={4, 7})
        report = WorkerPoolScheduler(make_config(ncpus=3), pipeline).run(table)

        assert table.all_terminal()
        assert report.succeeded == 10
        assert report.failed == 2
        assert report.has_failures
        assert [unit.index for unit in table.failed()] == [4, 7]
        assert table[4].diagnostics.error_summary == "Profile failed."

    def test_concurrency_bounded(self, tmp_path):
        table = make_table(tmp_path, [5] * 12)
        pipeline = StubPipeline(delay=0.02)
        WorkerPoolScheduler(make_config(ncpus=3), pipeline).run(table)

        assert 1 <= pipeline.peak <= 3
        assert set(pipeline.ncpus) == {1}

    def test_single_worker_gets_all_cpus(self, tmp_path):
        table = make_table(tmp_path, [5, 6])
        pipeline = StubPipeline()
        WorkerPoolScheduler(make_config(ncpus=4), pipeline).run(table)

        assert pipeline.peak == 1
        assert pipeline.ncpus == [4, 4]

    def test_timings_accumulate(self, tmp_path):
        table = make_table(tmp_path, [5, 6, 7])
        report = WorkerPoolScheduler(make_config(), StubPipeline()).run(table)
        assert report.timing.search == pytest.approx(9.0)
        assert report.timing.construction == pytest.approx(3.0)
        assert table[0].timing.search == pytest.approx(3.0)

    def test_progress_every_tenth(self, tmp_path):
        messages = []
        table = make_table(tmp_path, [5] * 20)
        scheduler = WorkerPoolScheduler(make_config(ncpus=2), StubPipeline(),
                                        progress=messages.append)
        report = scheduler.run(table)

        assert len(messages) == 10
        assert messages == report.progress
        assert messages[-1].startswith("  20/20 queries done")

    def test_progress_boundaries_exclude_failures(self, tmp_path):
        messages = []
        table = make_table(tmp_path, [5, 4])
        scheduler = WorkerPoolScheduler(make_config(ncpus=1), StubPipeline(failing={0}),
                                        progress=messages.append)
        scheduler.run(table)
        assert messages == [
            "  1/2 queries done (time distr.: 75% MSA, 25% profile construction)"
        ]

    def test_worker_exception_fails_unit(self, tmp_path):
        table = make_table(tmp_path, [5, 6, 7])
        report = WorkerPoolScheduler(make_config(), StubPipeline(raising={1})).run(table)

        assert report.failed == 1
        assert table[1].status is UnitStatus.FAILED
        assert "worker crashed" in table[1].diagnostics.error
        assert table[0].status is UnitStatus.SUCCEEDED

    def test_launch_failure_fails_unit(self, tmp_path, monkeypatch):
        table = make_table(tmp_path, [5, 6])
        submit = ThreadPoolExecutor.submit
        calls = []

        def flaky_submit(self, fn, *args, **kwargs):
            calls.append(args[0].index)
            if len(calls) == 1:
                raise RuntimeError("can't start new thread")
            return submit(self, fn, *args, **kwargs)

        monkeypatch.setattr(ThreadPoolExecutor, "submit", flaky_submit)
        report = WorkerPoolScheduler(make_config(ncpus=1), StubPipeline()).run(table)

        assert report.failed == 1 and report.succeeded == 1
        assert table[1].status is UnitStatus.FAILED
        assert table[1].diagnostics.error.startswith("Creation of thread 1 (input 1) failed")

    def test_stop_abandons_pending_units(self, tmp_path):
        table = make_table(tmp_path, [9, 8, 7, 6])
        holder = {}

        def stop_after_first(index):
            if index == 0:
                holder["scheduler"].request_stop()

        scheduler = WorkerPoolScheduler(make_config(ncpus=1),
                                        StubPipeline(on_start=stop_after_first))
        holder["scheduler"] = scheduler
        report = scheduler.run(table)

        assert table[0].status is UnitStatus.SUCCEEDED
        assert [unit.index for unit in table.failed()] == [1, 2, 3]
        assert report.failed == 3
        assert "aborted" in table[2].diagnostics.error_summary

    def test_only_pending_units_scheduled(self, tmp_path):
        table = make_table(tmp_path, [5, 6])
        table[0].mark_failed("earlier", "earlier")
        pipeline = StubPipeline()
        report = WorkerPoolScheduler(make_config(), pipeline).run(table)

        assert pipeline.order == [1]
        assert report.total == 1
