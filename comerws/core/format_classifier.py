"""
Format detection for a single query record.

The classification is permissive: a record is never rejected here; tools
further down the pipeline report malformed content. Precedence:

  1. ``# STOCKHOLM`` on the first line       -> Stockholm MSA
  2. ``COMER profile`` / ``COTHER profile``   -> profile
  3. any ``>ss_dssp``/``>ss_pred``/``>ss_conf`` pseudo-header -> A3M
  4. by header count: 0 or 1 -> plain FASTA (0 gets a synthesized header);
     2 or more -> A3M when sequence lengths differ, aligned FASTA otherwise
"""

import re
from dataclasses import dataclass
from typing import List, Optional, Sequence

from .query_unit import QueryFormat
from ..config.constants import UNNAMED_QUERY_HEADER

STOCKHOLM_MARKER = re.compile(r"^#\s+STOCKHOLM")
COMER_MARKER = re.compile(r"^COMER\s+profile")
COTHER_MARKER = re.compile(r"^COTHER\s+profile")
SS_PSEUDO_HEADER = re.compile(r"^>(ss_dssp|ss_pred|ss_conf)")
EMPTY_HEADER = re.compile(r"^>\s*$")
RECORD_TERMINATOR = "//"


@dataclass(frozen=True)
class ClassifiedRecord:
    format: QueryFormat
    content: str


def _first_line_format(line: str) -> Optional[QueryFormat]:
    if STOCKHOLM_MARKER.match(line):
        return QueryFormat.STOCKHOLM_MSA
    if COMER_MARKER.match(line):
        return QueryFormat.COMER_PROFILE
    if COTHER_MARKER.match(line):
        return QueryFormat.COTHER_PROFILE
    return None


def _sequence_lengths(lines: Sequence[str]) -> List[int]:
    """Residue counts of the sequences following each header."""
    lengths: List[int] = []
    current: Optional[int] = None
    for line in lines:
        if line.startswith(">"):
            if current is not None:
                lengths.append(current)
            current = 0
        elif current is not None:
            current += len("".join(line.split()))
    if current is not None:
        lengths.append(current)
    return lengths


def classify_record(lines: Sequence[str], index: int) -> ClassifiedRecord:
    """
    Detect the format of one record and normalize its content.

    Args:
        lines: Non-blank lines of the record, without line terminators
        index: Query number, used for a synthesized header

    Returns:
        Detected format and the content to write to the query's input file
    """
    lines = [line.rstrip("\r\n") for line in lines]
    placeholder = UNNAMED_QUERY_HEADER.format(index=index)

    fmt = _first_line_format(lines[0]) if lines else None
    if fmt is QueryFormat.STOCKHOLM_MSA:
        if lines[-1].strip() != RECORD_TERMINATOR:
            lines.append(RECORD_TERMINATOR)
        return ClassifiedRecord(fmt, "\n".join(lines) + "\n")
    if fmt is not None:
        return ClassifiedRecord(fmt, "\n".join(lines) + "\n")

    nheaders = sum(1 for line in lines if line.startswith(">"))
    if any(SS_PSEUDO_HEADER.match(line) for line in lines):
        fmt = QueryFormat.A3M
    elif nheaders <= 1:
        fmt = QueryFormat.PLAIN_FASTA
    elif len(set(_sequence_lengths(lines))) > 1:
        fmt = QueryFormat.A3M
    else:
        fmt = QueryFormat.ALIGNED_FASTA

    if nheaders == 0:
        lines.insert(0, placeholder)
    elif EMPTY_HEADER.match(lines[0]):
        lines[0] = placeholder

    return ClassifiedRecord(fmt, "\n".join(lines) + "\n")
