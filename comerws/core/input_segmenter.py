"""
Distribution of a batch input file into per-query working directories.

Records are separated by lines consisting solely of ``//``. Each non-empty
record is classified and written to ``<job>__<i>/<job>__<i>.<ext>`` next to
the input file, and becomes one pending ``QueryUnit``.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, List

from .format_classifier import RECORD_TERMINATOR, classify_record
from .query_unit import QueryFormat, QueryTable, QueryUnit
from ..config.constants import LOG_EXT, QUERY_ENCODING
from ..utils.error_handling import InputError

logger = logging.getLogger(__name__)


@dataclass
class SegmentationResult:
    table: QueryTable
    info_message: str = ""
    warnings: List[str] = field(default_factory=list)


def iter_records(lines: Iterator[str]) -> Iterator[List[str]]:
    """Yield the non-blank lines of each ``//``-separated record."""
    record: List[str] = []
    for line in lines:
        if line.strip() == RECORD_TERMINATOR:
            if record:
                yield record
            record = []
            continue
        if not line.strip():
            continue
        record.append(line.rstrip("\r\n"))
    if record:
        yield record


def describe_formats(formats: List[QueryFormat]) -> str:
    distinct = set(formats)
    if len(distinct) > 1:
        return "The queries in the input have different formats."
    (fmt,) = distinct
    if len(formats) == 1:
        return f"Input query detected as {fmt.description}."
    return f"Input queries detected as {fmt.description}."


class InputSegmenter:
    """Splits a job's input file into query units."""

    def __init__(self, input_file: Path, max_queries: int):
        self.input_file = Path(input_file)
        self.max_queries = max_queries
        self.job_dir = self.input_file.parent
        self.job_name = self.input_file.stem

    def unit_paths(self, index: int, fmt: QueryFormat):
        name = f"{self.job_name}__{index}"
        workdir = self.job_dir / name
        base = workdir / name
        return workdir, base, Path(f"{base}.{fmt.extension}")

    def segment(self) -> SegmentationResult:
        """
        Create the working directories and query files.

        Returns:
            Table of pending units, an info message on the detected formats
            and any warnings (query count truncation)

        Raises:
            InputError: If the input cannot be read, contains no queries, or a
                directory or file cannot be created
        """
        table = QueryTable()
        warnings: List[str] = []
        formats: List[QueryFormat] = []

        try:
            handle = open(self.input_file, "r", encoding=QUERY_ENCODING)
        except OSError as e:
            raise InputError(
                f"Failed to open input file '{self.input_file}': {e}",
                summary="Failed to open the input file.",
            ) from e

        with handle:
            for lines in iter_records(handle):
                if len(table) >= self.max_queries:
                    warnings.append(
                        "Number of queries reduced to the maximum allowed: "
                        f"{self.max_queries}"
                    )
                    break
                index = len(table)
                record = classify_record(lines, index)
                table.append(self._write_unit(index, record.format, record.content))
                formats.append(record.format)

        if not table:
            raise InputError(
                f"No queries found in '{self.input_file}'",
                summary="Invalid input format: No queries.",
            )

        info = describe_formats(formats)
        logger.info(f"{len(table)} queries distributed; {info}")
        return SegmentationResult(table=table, info_message=info, warnings=warnings)

    def _write_unit(self, index: int, fmt: QueryFormat, content: str) -> QueryUnit:
        workdir, base, input_path = self.unit_paths(index, fmt)
        try:
            workdir.mkdir(exist_ok=True)
            input_path.write_text(content, encoding=QUERY_ENCODING)
        except OSError as e:
            raise InputError(
                f"Failed to write query No.{index} to '{input_path}': {e}",
                summary="Failed to create a file or directory.",
            ) from e
        return QueryUnit(
            index=index,
            format=fmt,
            workdir=workdir,
            input_path=input_path,
            base_path=base,
            log_path=Path(f"{base}.{LOG_EXT}"),
            size_bytes=len(content.encode(QUERY_ENCODING)),
        )
