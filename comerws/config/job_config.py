"""
Job configuration.

Two sources are combined into one immutable ``JobConfiguration``:

  - the backend configuration (YAML): CPU budget, job limits, retry policy,
    tool installation directories and database directories;
  - the job options file written by the front end: database names, search
    engines in use and their parameters.

The configuration is resolved once per job and passed explicitly to every
component.
"""

import glob
import os
from copy import deepcopy
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import psutil
import yaml

from . import constants as C
from . import options_file as opt
from .options_file import JobOptions
from ..utils.error_handling import RetryPolicy, ValidationError

REPO_DIR = Path(__file__).resolve().parents[2]
DEFAULT_CONFIG_FILE = "config/comerws_config.yaml"

DEFAULT_SETTINGS: Dict[str, Any] = {
    "job": {
        "num_cpus": C.MAX_NCPUS,
        "multicore_threshold": C.MULTICORE_THRESHOLD,
        "max_queries": C.MAX_NQUERIES,
        "max_queries_cother": C.MAX_NQUERIES_COTHER,
        "max_seqs_per_engine": C.MAX_NSEQS_PER_ENGINE,
        "max_seq_len_cother": C.MAX_SEQLEN_COTHER,
        "device_memory_gb": 0,
    },
    "retry": {
        "max_attempts": 3,
        "delay": 2.0,
        "backoff": 1.0,
        "tools": ["comer", "cother"],
    },
    "install": {
        "comer": "/opt/comer",
        "cother": "/opt/cother",
        "ropius0": "/opt/ropius0",
        "hhsuite": "/opt/hhsuite",
        "hmmer": "/opt/hmmer",
        "blast": "/opt/blast",
        "psipred": "/opt/psipred",
    },
    "helpers": {
        "hhsuite": "/opt/comerws/bin/hhblits_helper.sh",
        "hmmer": "/opt/comerws/bin/hmmsearch_iterated.sh",
        "pwfa2msa": "/opt/comerws/bin/pwfa2msa.pl",
    },
    "databases": {
        "comer": [],
        "cother": [],
        "hhsuite": "",
        "sequence": "",
    },
}


@dataclass(frozen=True)
class EngineSettings:
    """One sequence-search engine used to build a query's MSA."""

    name: str
    database: str
    iterations: int
    evalue: float
    helper: str
    install_dir: str
    suffix: str


@dataclass(frozen=True)
class ToolPaths:
    """Executables of the external tools."""

    reformat: str
    pwfa2msa: str
    neff: str
    makepro: str
    makecov: str
    comer: str
    cother: str = ""
    adddist: str = ""
    distopred: str = ""
    psipred_dir: str = ""
    blast_dir: str = ""

    @classmethod
    def from_install(cls, install: Dict[str, str], helpers: Dict[str, str],
                     ss_scoring: bool) -> "ToolPaths":
        comer_bin = Path(install["comer"]) / "bin"
        cother_bin = Path(install["cother"]) / "bin"
        return cls(
            reformat=str(Path(install["hhsuite"]) / "scripts" / "reformat.pl"),
            pwfa2msa=helpers["pwfa2msa"],
            neff=str(comer_bin / "neff"),
            makepro=str(comer_bin / ("makepro.sh" if ss_scoring else "makepro")),
            makecov=str(comer_bin / "makecov"),
            comer=str(comer_bin / "comer"),
            cother=str(cother_bin / "cother"),
            adddist=str(cother_bin / "adddist"),
            distopred=str(Path(install["ropius0"]) / "srvs" / "distopred.sh"),
            psipred_dir=install["psipred"],
            blast_dir=install["blast"],
        )


@dataclass(frozen=True)
class JobConfiguration:
    """Immutable configuration of one search job."""

    method: str
    ncpus: int
    tools: ToolPaths
    options_file: Optional[Path] = None
    profile_databases: Tuple[str, ...] = ()
    engines: Tuple[EngineSettings, ...] = ()
    multicore_threshold: int = C.MULTICORE_THRESHOLD
    max_queries: int = C.MAX_NQUERIES
    max_seqs_per_engine: int = C.MAX_NSEQS_PER_ENGINE
    max_seq_len_cother: int = C.MAX_SEQLEN_COTHER
    ss_scoring: bool = True
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    device_memory_mb: int = 0
    no_profile: bool = False
    no_search: bool = False
    one_worker: bool = False

    @property
    def is_cother(self) -> bool:
        return self.method == "cother"

    @property
    def search_enabled(self) -> bool:
        return bool(self.engines)

    @property
    def combine_engines(self) -> bool:
        return len(self.engines) > 1

    @property
    def max_evalue(self) -> float:
        return max(engine.evalue for engine in self.engines)


def load_backend_settings(config_file: Optional[Union[str, Path]] = None) -> Dict[str, Any]:
    """
    Load the backend YAML configuration merged over built-in defaults.

    Args:
        config_file: YAML file; relative paths are tried against the working
            directory first and the repository second

    Returns:
        Settings dictionary with every section present
    """
    settings = deepcopy(DEFAULT_SETTINGS)
    config_path = Path(config_file or DEFAULT_CONFIG_FILE)

    if not config_path.is_absolute():
        candidate = Path.cwd() / config_path
        config_path = candidate if candidate.exists() else REPO_DIR / config_path

    if not config_path.exists():
        if config_file:
            raise ValidationError(
                f"Backend configuration file not found: {config_path}",
                field="config_file",
                value=str(config_path),
            )
        return settings

    with open(config_path, "r") as handle:
        loaded = yaml.safe_load(handle) or {}

    for section, values in loaded.items():
        if isinstance(values, dict) and isinstance(settings.get(section), dict):
            settings[section].update(values)
        else:
            settings[section] = values
    return settings


def system_cpu_count() -> int:
    return psutil.cpu_count(logical=True) or 1


def cpu_budget(configured: Optional[Any]) -> int:
    """Configured CPU count capped at what the host has."""
    try:
        ncpus = int(configured) if configured is not None else C.MAX_NCPUS
    except (TypeError, ValueError):
        ncpus = C.MAX_NCPUS
    return max(1, min(ncpus, system_cpu_count()))


def _as_list(value: Union[str, List[str], None]) -> List[str]:
    if not value:
        return []
    if isinstance(value, str):
        return [value]
    return list(value)


def resolve_profile_databases(
    names: Optional[str], directories: List[str], extension: str, label: str,
    warnings: List[str],
) -> Tuple[str, ...]:
    """Resolve comma-separated database names against the database directories."""
    if not names:
        raise ValidationError(
            f"{label} profile database not specified in the job options file",
            field=f"{label.lower()}_db",
        )
    resolved = []
    for name in names.split(","):
        name = name.strip()
        for directory in directories:
            fullname = os.path.join(directory, name)
            if os.path.isfile(f"{fullname}.{extension}"):
                resolved.append(fullname)
                break
        else:
            warnings.append(f"WARNING: {label} profile database not found: {name}")
    if not resolved:
        raise ValidationError(
            f"All {label} db(s) '{names}' not found in the {label} db directories",
            field=f"{label.lower()}_db",
            value=names,
        )
    return tuple(resolved)


def _engine(
    options: JobOptions,
    name: str,
    database: str,
    iterations_key: str,
    evalue_key: str,
    helper: str,
    install_dir: str,
    suffix: str,
) -> EngineSettings:
    return EngineSettings(
        name=name,
        database=database,
        iterations=options.iterations(iterations_key),
        evalue=options.evalue(evalue_key),
        helper=helper,
        install_dir=install_dir,
        suffix=suffix,
    )


def resolve_job_configuration(
    settings: Dict[str, Any],
    options: JobOptions,
    method: str = "comer",
    no_profile: bool = False,
    no_search: bool = False,
) -> Tuple[JobConfiguration, List[str]]:
    """
    Combine backend settings and job options into a job configuration.

    Args:
        settings: Backend settings from ``load_backend_settings``
        options: Validated job options
        method: ``comer`` or ``cother``
        no_profile: Stop after building MSAs
        no_search: Skip the batch profile search

    Returns:
        Tuple of (configuration, warnings for the submitter)

    Raises:
        ValidationError: If an option or database is missing or invalid
    """
    if method not in C.METHODS:
        raise ValidationError(f"Unknown search method: {method}", field="method", value=method)

    warnings: List[str] = list(options.warnings)
    job = settings["job"]
    install = settings["install"]
    helpers = settings["helpers"]
    databases = settings["databases"]
    retry = settings["retry"]

    profile_databases: Tuple[str, ...] = ()
    if not no_search:
        if method == "cother":
            profile_databases = resolve_profile_databases(
                options.get(opt.COTHER_DB), _as_list(databases.get("cother")),
                C.COTHER_DB_EXT, "COTHER", warnings,
            )
        else:
            profile_databases = resolve_profile_databases(
                options.get(opt.COMER_DB), _as_list(databases.get("comer")),
                C.COMER_DB_EXT, "COMER", warnings,
            )

    engines = []
    if options.flag(opt.HHSUITE_IN_USE):
        name = options.get(opt.HHSUITE_DB)
        if not name:
            raise ValidationError("HHsuite database not specified", field=opt.HHSUITE_DB)
        fullname = os.path.join(databases.get("hhsuite") or "", name)
        if not glob.glob(f"{glob.escape(fullname)}*"):
            raise ValidationError(
                f"HHsuite db '{name}*' not found", field=opt.HHSUITE_DB, value=name
            )
        engines.append(_engine(
            options, "hhsuite", fullname, opt.HHSUITE_NITERATIONS, opt.HHSUITE_EVALUE,
            helpers["hhsuite"], install["hhsuite"], C.HHSUITE_SUFFIX,
        ))
    if options.flag(opt.HMMER_IN_USE):
        name = options.get(opt.SEQUENCE_DB)
        if not name:
            raise ValidationError("A sequence database is not specified", field=opt.SEQUENCE_DB)
        fullname = os.path.join(databases.get("sequence") or "", name)
        if not os.path.isfile(fullname):
            raise ValidationError(
                f"Sequence database '{name}' not found", field=opt.SEQUENCE_DB, value=name
            )
        engines.append(_engine(
            options, "hmmer", fullname, opt.HMMER_NITERATIONS, opt.HMMER_EVALUE,
            helpers["hmmer"], install["hmmer"], C.HMMER_SUFFIX,
        ))

    max_queries = job["max_queries_cother"] if method == "cother" else job["max_queries"]

    config = JobConfiguration(
        method=method,
        ncpus=cpu_budget(job.get("num_cpus")),
        tools=ToolPaths.from_install(install, helpers, options.ss_scoring),
        options_file=options.path,
        profile_databases=profile_databases,
        engines=tuple(engines),
        multicore_threshold=int(job["multicore_threshold"]),
        max_queries=int(max_queries),
        max_seqs_per_engine=int(job["max_seqs_per_engine"]),
        max_seq_len_cother=int(job["max_seq_len_cother"]),
        ss_scoring=options.ss_scoring,
        retry=RetryPolicy(
            max_attempts=int(retry["max_attempts"]),
            delay=float(retry["delay"]),
            backoff=float(retry["backoff"]),
            tools=frozenset(retry["tools"]),
        ),
        device_memory_mb=int(float(job.get("device_memory_gb") or 0) * 1024),
        no_profile=no_profile,
        no_search=no_search,
    )
    return config, warnings
