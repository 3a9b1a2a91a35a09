"""
Results delivery: the results list (manifest), a per-query summary table and
the compressed archive of everything the submitter can download.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional
import csv
import logging
import os
import tarfile

import pandas as pd

from comerws.config.constants import MANIFEST_HEADER
from comerws.core.query_unit import ArtifactKind, QueryTable, QueryUnit
from comerws.utils.error_handling import ArchiveError, FileError

logger = logging.getLogger(__name__)

SUMMARY_COLUMNS = [
    "query",
    "name",
    "format",
    "status",
    "search_seconds",
    "construction_seconds",
    "results",
    "error",
    "warning",
]


@dataclass
class AggregationResult:
    manifest: Path
    archive: Path
    summary: Optional[Path] = None
    files: List[str] = field(default_factory=list)
    secondary_errors: List[str] = field(default_factory=list)


def _relative(path: Optional[Path], job_dir: Path) -> str:
    """Path relative to the job directory; empty when the file does not exist."""
    if path is None or not Path(path).is_file():
        return ""
    return os.path.relpath(path, job_dir)


def manifest_row(unit: QueryUnit, job_dir: Path) -> List[str]:
    paths = [
        unit.artifact(ArtifactKind.OUTPUT),
        unit.artifact(ArtifactKind.PROFILE),
        unit.artifact(ArtifactKind.MSA),
        unit.input_path,
        unit.artifact(ArtifactKind.NEFF),
        unit.log_path,
    ]
    return [_relative(path, job_dir) for path in paths]


class ResultAggregator:
    """Writes the manifest, the summary table and the archive of a job."""

    def __init__(self, job_dir: Path, manifest: Path, archive: Path,
                 summary: Optional[Path] = None):
        self.job_dir = Path(job_dir)
        self.manifest = Path(manifest)
        self.archive = Path(archive)
        self.summary = Path(summary) if summary else None

    def write_manifest(self, table: QueryTable) -> List[str]:
        """
        Write the results list: one quoted, tab-separated row per succeeded
        query.

        Returns:
            Job-relative names of the non-empty files listed
        """
        files: List[str] = []
        try:
            with open(self.manifest, "w", newline="") as handle:
                handle.write(MANIFEST_HEADER + "\n")
                writer = csv.writer(
                    handle, delimiter="\t", quoting=csv.QUOTE_ALL, lineterminator="\n"
                )
                for unit in table.succeeded():
                    row = manifest_row(unit, self.job_dir)
                    writer.writerow(row)
                    files.extend(name for name in row if name)
        except OSError as e:
            raise FileError(
                f"Failed to write the results list: {e}",
                file_path=str(self.manifest),
                operation="write",
                summary="Failed to write the list of results files.",
            ) from e
        return files

    def write_summary(self, table: QueryTable) -> Optional[Path]:
        """Per-query status table, one row per query of the job."""
        if self.summary is None:
            return None
        rows = []
        for unit in table:
            rows.append(
                {
                    "query": unit.index,
                    "name": unit.name,
                    "format": unit.format.extension,
                    "status": unit.status.value,
                    "search_seconds": round(unit.timing.search, 2),
                    "construction_seconds": round(unit.timing.construction, 2),
                    "results": _relative(unit.artifact(ArtifactKind.OUTPUT), self.job_dir),
                    "error": unit.diagnostics.error_summary,
                    "warning": unit.diagnostics.warning_summary.replace("\n", " "),
                }
            )
        df = pd.DataFrame(rows, columns=SUMMARY_COLUMNS)
        try:
            df.to_csv(self.summary, sep="\t", index=False)
        except OSError as e:
            raise FileError(
                f"Failed to write the query summary table: {e}",
                file_path=str(self.summary),
                operation="write",
                summary="Failed to write the query summary table.",
            ) from e
        return self.summary

    def write_archive(self, primary: List[Path], secondary: List[Path]) -> List[str]:
        """
        Create the gzip-compressed archive.

        Primary files must all be archived; secondary files are added when
        possible.

        Returns:
            Error messages for secondary files that could not be added

        Raises:
            ArchiveError: If the archive or a primary file cannot be written
        """
        errors: List[str] = []
        try:
            tar = tarfile.open(self.archive, "w:gz")
        except OSError as e:
            raise ArchiveError(
                f"Failed to create archive: {e}",
                file_path=str(self.archive),
                summary="Failed to archive the results files.",
            ) from e

        with tar:
            for path in primary:
                try:
                    tar.add(str(path), arcname=os.path.relpath(path, self.job_dir))
                except OSError as e:
                    raise ArchiveError(
                        f"Failed to add file to archive: '{path}': {e}",
                        file_path=str(path),
                        summary="Failed to archive some of the results files.",
                    ) from e
            for path in secondary:
                try:
                    tar.add(str(path), arcname=os.path.relpath(path, self.job_dir))
                except OSError as e:
                    message = f"Failed to add file to archive: '{path}': {e}"
                    logger.error(message)
                    errors.append(message)
        return errors

    def aggregate(self, table: QueryTable, search_log: Optional[Path],
                  status_file: Path, error_file: Path) -> AggregationResult:
        """
        Produce the manifest, the summary table and the archive.

        Raises:
            FileError: If the manifest or the summary table cannot be written
            ArchiveError: If a primary file cannot be archived
        """
        files = self.write_manifest(table)
        summary = self.write_summary(table)

        primary: List[Path] = []
        if search_log is not None and Path(search_log).is_file():
            primary.append(Path(search_log))
        primary.append(self.manifest)
        if summary is not None:
            primary.append(summary)
        primary.extend(self.job_dir / name for name in files)

        errors = self.write_archive(primary, [Path(status_file), Path(error_file)])
        logger.info(f"Archived {len(primary)} result files to {self.archive}")
        return AggregationResult(
            manifest=self.manifest,
            archive=self.archive,
            summary=summary,
            files=files,
            secondary_errors=errors,
        )
