"""
Tabular reader and writer.

Responsibilities:
- dialect detection
- header trimming + de-duplication
- row width enforcement (short rows keep absent cells, long rows are cut)
- warning reporting; only untokenizable input is an error
- serialization back to comma-delimited text in a given header order
"""

from __future__ import annotations

import csv
import io
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .errors import CsvParseError
from .models import ParseIssue, TablePreview
from .rules import (
    CANDIDATE_DELIMITERS,
    DEFAULT_PREVIEW_ROWS,
    MAX_FIELD_CHARS,
    NORMALIZED_DELIMITER,
    OUTPUT_LINE_TERMINATOR,
    SNIFF_SAMPLE_CHARS,
)

logger = logging.getLogger(__name__)

Row = Dict[str, Optional[str]]


@dataclass(frozen=True)
class Table:
    """
    Ordered rows plus an ordered header of distinct column names.

    A row's position in ``rows`` is its identity for the lifetime of a
    reconciliation run. Columns a row does not carry read as absent.
    """

    header: Tuple[str, ...] = ()
    rows: Tuple[Row, ...] = ()
    warnings: Tuple[ParseIssue, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "header", tuple(self.header))
        object.__setattr__(self, "rows", tuple(self.rows))
        object.__setattr__(self, "warnings", tuple(self.warnings))

        if len(set(self.header)) != len(self.header):
            raise ValueError(f"header contains duplicate column names: {list(self.header)}")
        known = set(self.header)
        for index, row in enumerate(self.rows):
            unknown = set(row) - known
            if unknown:
                raise ValueError(f"row {index} has columns not in header: {sorted(unknown)}")

    @classmethod
    def from_rows(cls, rows: Iterable[Mapping[str, Optional[str]]], header: Optional[Sequence[str]] = None) -> "Table":
        """Build a table from row mappings; the header defaults to keys in first-seen order."""
        materialized = [dict(row) for row in rows]
        if header is None:
            seen: Dict[str, None] = {}
            for row in materialized:
                for key in row:
                    seen.setdefault(key, None)
            header = list(seen)
        return cls(header=tuple(header), rows=tuple(materialized))


def ensure_field_size_limit(limit: int) -> None:
    """Let a single cell be at least ``limit`` characters long (process-wide)."""
    if csv.field_size_limit() < limit:
        csv.field_size_limit(limit)


ensure_field_size_limit(MAX_FIELD_CHARS)


def detect_delimiter(text: str) -> str:
    try:
        dialect = csv.Sniffer().sniff(text[:SNIFF_SAMPLE_CHARS], delimiters=CANDIDATE_DELIMITERS)
        return dialect.delimiter
    except csv.Error:
        return NORMALIZED_DELIMITER


def _is_blank_record(record: List[str]) -> bool:
    return not record or record == [""]


def _build_header(raw: List[str], line: int, issues: List[ParseIssue]) -> List[str]:
    header: List[str] = []
    seen = set()

    for position, name in enumerate(raw, start=1):
        name = name.strip()
        if not name:
            name = f"column_{position}"
            issues.append(ParseIssue(row=line, column=name, issue="blank_header", value="", action="renamed"))

        if name in seen:
            suffix = 1
            while f"{name}_{suffix}" in seen:
                suffix += 1
            renamed = f"{name}_{suffix}"
            issues.append(ParseIssue(row=line, column=renamed, issue="duplicate_header", value=name, action="renamed"))
            name = renamed

        seen.add(name)
        header.append(name)

    return header


def parse_csv(text: str) -> Table:
    """
    Parse delimited text into a :class:`Table`.

    The first non-empty record is the header. Cell values are kept exactly
    as they appear in the input. Per-row problems are collected as warnings;
    an unterminated quoted field, or text after a closing quote, raises
    :class:`CsvParseError`.
    """
    delimiter = detect_delimiter(text)
    reader = csv.reader(io.StringIO(text, newline=""), delimiter=delimiter, strict=True)

    issues: List[ParseIssue] = []
    header: Optional[List[str]] = None
    rows: List[Row] = []

    try:
        for record in reader:
            if _is_blank_record(record):
                continue

            if header is None:
                header = _build_header(record, reader.line_num, issues)
                continue

            width = len(header)
            if len(record) < width:
                issues.append(ParseIssue(
                    row=reader.line_num,
                    issue="row_too_short",
                    value=str(len(record)),
                    action="missing_cells_absent",
                ))
            elif len(record) > width:
                issues.append(ParseIssue(
                    row=reader.line_num,
                    issue="row_too_long",
                    value=str(len(record)),
                    action=f"truncated_to_{width}",
                ))

            rows.append(dict(zip(header, record)))
    except csv.Error as exc:
        raise CsvParseError(f"Could not parse CSV near line {reader.line_num}: {exc}") from exc

    if issues:
        logger.info(f"Parsed {len(rows)} rows with {len(issues)} warnings")

    return Table(header=tuple(header or ()), rows=tuple(rows), warnings=tuple(issues))


def preview_csv(text: str, max_rows: int = DEFAULT_PREVIEW_ROWS) -> TablePreview:
    """Header, the first ``max_rows`` rows and the full row count."""
    if max_rows < 0:
        raise ValueError("max_rows must not be negative")

    table = parse_csv(text)
    return TablePreview(
        header=list(table.header),
        sample_rows=[dict(row) for row in table.rows[:max_rows]],
        total_rows=len(table.rows),
    )


def serialize_csv(rows: Iterable[Mapping[str, Any]], header: Sequence[str]) -> str:
    """
    Serialize rows in header order.

    Every output line carries exactly the header columns; absent keys and
    ``None`` become empty cells.
    """
    outp = io.StringIO(newline="")
    writer = csv.writer(outp, delimiter=NORMALIZED_DELIMITER, lineterminator=OUTPUT_LINE_TERMINATOR)

    writer.writerow(header)
    for row in rows:
        writer.writerow(["" if row.get(column) is None else row.get(column) for column in header])

    return outp.getvalue()
