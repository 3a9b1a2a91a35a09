"""
Small readers and rewriters for the files exchanged with the tools.
"""

import logging
import re
import shutil
from pathlib import Path
from typing import Iterable, List

from Bio import SeqIO

from ..config.constants import QUERY_ENCODING
from ..utils.error_handling import FileError

logger = logging.getLogger(__name__)

FILE_FIELD = re.compile(r"^(FILE:).*$", re.MULTILINE)
LENGTH_FIELD = re.compile(r"^LEN:\s+(\d+)")
SS_RECORD_PREFIX = "ss_"


def rewrite_profile_file_field(profile: Path, output: Path, value: str) -> None:
    """Copy a COMER/COTHER profile, replacing its ``FILE:`` field with ``value``."""
    try:
        text = Path(profile).read_text(encoding=QUERY_ENCODING)
        Path(output).write_text(
            FILE_FIELD.sub(lambda m: f"{m.group(1)} {value}", text), encoding=QUERY_ENCODING
        )
    except OSError as e:
        raise FileError(
            f"Failed to rewrite the FILE field of profile: {e}",
            file_path=str(profile),
            operation="rewrite_profile",
        ) from e


def profile_length(profile: Path) -> int:
    """Query length recorded in a profile's ``LEN:`` field; 0 when absent."""
    with open(profile, encoding=QUERY_ENCODING) as f:
        for line in f:
            match = LENGTH_FIELD.match(line)
            if match:
                return int(match.group(1))
    return 0


def extract_warnings(log_file: Path) -> List[str]:
    """Lines of a tool log that report a warning."""
    try:
        with open(log_file, encoding=QUERY_ENCODING) as f:
            return [line for line in f if re.search(r"\sWARNING", line)]
    except OSError as e:
        logger.warning(f"Unable to open log file '{log_file}': {e}")
        return []


def strip_secondary_structure(alignment: Path, output: Path) -> int:
    """
    Write an aligned FASTA file without ``ss_*`` pseudo-sequences.

    Returns:
        Number of sequences written
    """
    records = (
        record
        for record in SeqIO.parse(str(alignment), "fasta")
        if not record.id.startswith(SS_RECORD_PREFIX)
    )
    return SeqIO.write(records, str(output), "fasta-2line")


def concatenate_files(sources: Iterable[Path], output: Path) -> None:
    """Concatenate files into ``output``."""
    with open(output, "wb") as out:
        for source in sources:
            with open(source, "rb") as f:
                shutil.copyfileobj(f, out)
