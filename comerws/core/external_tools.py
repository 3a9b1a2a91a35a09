"""
External tool invocations.

Every tool the backend drives (MSA builders, profile and covariance
constructors, the distance predictor and the batch profile search) is
described by a ``ToolInvocation`` and executed by an ``ExternalToolRunner``.
The ``CommandBuilder`` turns a job configuration and file names into
invocations, so the command lines live in one place.
"""

import logging
import shlex
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple

from ..config import constants as C
from ..config.job_config import EngineSettings, JobConfiguration
from ..utils.common import run_command_safe
from ..utils.error_handling import RetryPolicy, call_with_retry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ToolInvocation:
    """One command line, with where its output goes."""

    tool: str
    argv: Tuple[str, ...]
    log_path: Path
    stdout_path: Optional[Path] = None
    append_log: bool = True

    def command_line(self) -> str:
        return shlex.join(self.argv)

    def option(self, flag: str) -> Optional[str]:
        """Value following ``flag`` in the argument list."""
        try:
            return self.argv[self.argv.index(flag) + 1]
        except (ValueError, IndexError):
            return None


class ExternalToolRunner:
    """Runs tool invocations; tools named by the retry policy are retried."""

    def __init__(
        self,
        retry: Optional[RetryPolicy] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.retry = retry or RetryPolicy()
        self.sleep = sleep

    def run(self, invocation: ToolInvocation) -> None:
        """
        Execute an invocation.

        Raises:
            CommandError: If the tool cannot be started or exits non-zero
                (after the last attempt for retried tools)
        """
        logger.debug(f"Running {invocation.tool}: {invocation.command_line()}")
        if self.retry.applies_to(invocation.tool):
            call_with_retry(
                lambda: self._execute(invocation), self.retry, sleep=self.sleep
            )
        else:
            self._execute(invocation)

    def _execute(self, invocation: ToolInvocation) -> None:
        run_command_safe(
            list(invocation.argv),
            invocation.log_path,
            stdout_path=invocation.stdout_path,
            append_log=invocation.append_log,
        )


def _argv(*parts) -> Tuple[str, ...]:
    return tuple(str(p) for p in parts)


class CommandBuilder:
    """Builds the command lines of the external tools for one job."""

    def __init__(self, config: JobConfiguration):
        self.config = config
        self.tools = config.tools

    def _options_args(self) -> List[str]:
        if self.config.options_file is None:
            return []
        return ["-p", str(self.config.options_file)]

    def reformat_a3m(self, a3m: Path, output: Path, log: Path) -> ToolInvocation:
        return ToolInvocation(
            "reformat", _argv(self.tools.reformat, "a3m", "fas", a3m, output), log
        )

    def search_helper(
        self,
        engine: EngineSettings,
        query: Path,
        output_prefix: Path,
        ncpus: int,
        log: Path,
    ) -> ToolInvocation:
        args = [
            engine.helper,
            "-i", query,
            "-o", output_prefix,
            "-d", engine.database,
            "-n", engine.iterations,
            "-e", f"{engine.evalue:g}",
            "-p", ncpus,
        ]
        if not self.config.combine_engines:
            args.append("-a")
        args += ["-b", engine.install_dir, "-N", self.config.max_seqs_per_engine]
        return ToolInvocation(engine.name, _argv(*args), log)

    def pwfa2msa(self, pwfa: Path, msa: Path, query: Path, log: Path) -> ToolInvocation:
        # both engines contribute sequences
        return ToolInvocation(
            "pwfa2msa",
            _argv(
                self.tools.pwfa2msa,
                "-i", pwfa,
                "-o", msa,
                "-f", 0,
                "-q", query,
                "-e", f"{self.config.max_evalue:g}",
                "-N", self.config.max_seqs_per_engine * 2,
            ),
            log,
        )

    def neff(self, msa: Path, neff_file: Path, log: Path) -> ToolInvocation:
        return ToolInvocation(
            "neff", _argv(self.tools.neff, "-v", "-i", msa), log, stdout_path=neff_file
        )

    def makepro(self, msa: Path, profile: Path, log: Path) -> ToolInvocation:
        args = [self.tools.makepro, "-v", "-i", msa, "-o", profile] + self._options_args()
        if self.config.ss_scoring:
            args += ["-P", self.tools.psipred_dir, "-B", self.tools.blast_dir]
        return ToolInvocation("makepro", _argv(*args), log)

    def makecov(self, msa: Path, cov: Path, log: Path) -> ToolInvocation:
        args = [self.tools.makecov, "-v", "-i", msa, "-o", cov]
        args += self._options_args() + ["--scale", "--mi"]
        return ToolInvocation("makecov", _argv(*args), log)

    def distopred(self, msa: Path, outdir: Path, log: Path) -> ToolInvocation:
        return ToolInvocation(
            "distopred", _argv(self.tools.distopred, "-i", msa, "-o", outdir), log
        )

    def adddist(
        self, predictions: Path, profile: Path, output: Path, log: Path
    ) -> ToolInvocation:
        args = [self.tools.adddist, "-v", "-i", predictions, "-j", profile, "-o", output]
        args += self._options_args()
        args += [
            f"--dst={C.ADDDIST_DISTANCES}",
            f"--prb={C.ADDDIST_MIN_PROBABILITY}",
        ]
        return ToolInvocation("adddist", _argv(*args), log)

    def profile_search(
        self, profiles: Path, databases: Sequence[str], outdir: Path, log: Path
    ) -> ToolInvocation:
        method = self.config.method
        program = self.tools.cother if self.config.is_cother else self.tools.comer
        args = [program, "-v", "-i", profiles, "-d", ",".join(databases), "-o", outdir]
        args += self._options_args()
        args += ["-f", 1, f"--dev-pass2memp={C.PASS2MEMP[method]}"]
        if self.config.device_memory_mb > 256:
            args.append(f"--dev-mem={self.config.device_memory_mb}")
        return ToolInvocation(method, _argv(*args), log, append_log=False)
