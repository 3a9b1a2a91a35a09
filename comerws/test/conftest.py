"""
Shared fixtures: a tool runner that records invocations and fabricates the
files the real tools would write, and job configurations built around it.
"""

import threading
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import pytest

from comerws.config.job_config import EngineSettings, JobConfiguration, ToolPaths
from comerws.core.external_tools import ExternalToolRunner, ToolInvocation
from comerws.utils.error_handling import CommandError, FileError, RetryPolicy


class RecordingRunner(ExternalToolRunner):
    """Runs no programs; writes plausible tool outputs instead."""

    def __init__(self, retry: Optional[RetryPolicy] = None, profile_length: int = 120):
        super().__init__(retry or RetryPolicy(delay=0.0), sleep=lambda seconds: None)
        self.invocations: List[ToolInvocation] = []
        self.failures: List[Tuple[str, str]] = []
        self.transient_failures: Dict[str, int] = {}
        self.profile_length = profile_length
        self.search_warning = ""
        self._lock = threading.Lock()

    def fail(self, tool: str, substring: str = "") -> None:
        """Make ``tool`` fail whenever an argument contains ``substring``."""
        self.failures.append((tool, substring))

    def calls(self, tool: str) -> List[ToolInvocation]:
        return [inv for inv in self.invocations if inv.tool == tool]

    def _execute(self, invocation: ToolInvocation) -> None:
        with self._lock:
            self.invocations.append(invocation)
            remaining = self.transient_failures.get(invocation.tool, 0)
            if remaining:
                self.transient_failures[invocation.tool] = remaining - 1
        try:
            log = open(invocation.log_path, "a" if invocation.append_log else "w")
        except OSError as e:
            raise FileError(f"Cannot open log file: {e}", file_path=str(invocation.log_path),
                            operation="open") from e
        with log:
            log.write(invocation.command_line() + "\n\n")
            if invocation.tool in ("comer", "cother") and self.search_warning:
                log.write(f"comer: WARNING: {self.search_warning}\n")
        if remaining:
            raise CommandError("transient failure", command=invocation.command_line(),
                               return_code=1)
        for tool, substring in self.failures:
            if invocation.tool == tool and any(substring in arg for arg in invocation.argv):
                raise CommandError("tool failed", command=invocation.command_line(),
                                   return_code=1)
        getattr(self, f"_fake_{invocation.tool}")(invocation)

    def _fake_reformat(self, inv):
        Path(inv.argv[-1]).write_text(
            ">query\nAC-DE\n>ss_pred\nCCHHH\n>homolog\nACGDE\n"
        )

    def _fake_search_helper(self, inv):
        prefix = inv.option("-o")
        Path(f"{prefix}.qry").write_text(">query\nACDE\n")
        Path(f"{prefix}.pwfa").write_text(">query\nACDE\n>hit\nACDD\n")
        if "-a" in inv.argv:
            Path(f"{prefix}.afa").write_text(">query\nACDE\n>hit\nACDD\n")

    _fake_hhsuite = _fake_search_helper
    _fake_hmmer = _fake_search_helper

    def _fake_pwfa2msa(self, inv):
        Path(inv.option("-o")).write_text(">query\nACDE\n>hit\nACDD\n")

    def _fake_neff(self, inv):
        Path(inv.stdout_path).write_text("Neff: 1.5\n")

    def _fake_makepro(self, inv):
        msa = Path(inv.option("-i"))
        Path(inv.option("-o")).write_text(
            f"COMER profile v2.2\nDESC: query\nFILE: {msa.name}\n"
            f"LEN: {self.profile_length}\n"
        )

    def _fake_makecov(self, inv):
        Path(inv.option("-o")).write_text("xcov\n")

    def _fake_distopred(self, inv):
        msa = Path(inv.option("-i"))
        outdir = Path(inv.option("-o"))
        (outdir / f"{msa.name}__pred__nonavg.prb").write_text("distances\n")

    def _fake_adddist(self, inv):
        profile = Path(inv.option("-j"))
        text = profile.read_text().replace("COMER profile", "COTHER profile")
        Path(inv.option("-o")).write_text(text)

    def _fake_profile_search(self, inv):
        outdir = Path(inv.option("-o"))
        outdir.mkdir(exist_ok=True)
        names = [
            line.split(None, 1)[1].strip()
            for line in Path(inv.option("-i")).read_text().splitlines()
            if line.startswith("FILE:")
        ]
        for position, name in enumerate(names):
            stem = name.split(".")[0]
            (outdir / f"{stem}__{position}.json").write_text('{"hits": []}\n')

    _fake_comer = _fake_profile_search
    _fake_cother = _fake_profile_search


HHSUITE = EngineSettings(
    name="hhsuite",
    database="/data/uniref_hhs/UniRef30",
    iterations=2,
    evalue=0.001,
    helper="/opt/comerws/bin/hhblits_helper.sh",
    install_dir="/opt/hhsuite",
    suffix="_resulthhs",
)

HMMER = EngineSettings(
    name="hmmer",
    database="/data/uniref/uniref50.fasta",
    iterations=2,
    evalue=0.01,
    helper="/opt/comerws/bin/hmmsearch_iterated.sh",
    install_dir="/opt/hmmer",
    suffix="_resulthmmer",
)

TOOLS = ToolPaths(
    reformat="/opt/hhsuite/scripts/reformat.pl",
    pwfa2msa="/opt/comerws/bin/pwfa2msa.pl",
    neff="/opt/comer/bin/neff",
    makepro="/opt/comer/bin/makepro",
    makecov="/opt/comer/bin/makecov",
    comer="/opt/comer/bin/comer",
    cother="/opt/cother/bin/cother",
    adddist="/opt/cother/bin/adddist",
    distopred="/opt/ropius0/srvs/distopred.sh",
    psipred_dir="/opt/psipred",
    blast_dir="/opt/blast",
)


def make_config(**overrides) -> JobConfiguration:
    values = dict(
        method="comer",
        ncpus=4,
        tools=TOOLS,
        profile_databases=("/data/comer/pdb/pdb70",),
        engines=(HHSUITE,),
        ss_scoring=False,
        retry=RetryPolicy(max_attempts=3, delay=0.0),
    )
    values.update(overrides)
    return JobConfiguration(**values)


@pytest.fixture
def runner():
    return RecordingRunner()


@pytest.fixture
def config():
    return make_config()


@pytest.fixture
def job_dir(tmp_path):
    directory = tmp_path / "job"
    directory.mkdir()
    return directory


def write_input(job_dir: Path, text: str, name: str = "job1.in") -> Path:
    path = job_dir / name
    path.write_text(text)
    return path
