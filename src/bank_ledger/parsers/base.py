"""
Base dialect interface and common parsing helpers.
"""

import csv
import io
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any


class ParseError(Exception):
    """Structural failure to read a statement.

    Attributes:
        step: Pipeline step tag (find_header, parse_csv, parsed_0_rows)
        reason: Human-readable explanation
        extra: Diagnostic context (delimiter, first raw lines, dialect)
    """

    def __init__(self, step: str, reason: str, extra: dict[str, Any] | None = None):
        super().__init__(reason)
        self.step = step
        self.reason = reason
        self.extra = extra or {}


@dataclass
class ParsedStatement:
    """Rows read from a statement, keyed by header name."""

    dialect: str
    delimiter: str
    headers: list[str]
    rows: list[dict[str, str]] = field(default_factory=list)
    header_index: int = 0


def normalise_lines(text: str) -> list[str]:
    """Strip a BOM and split on any newline convention."""
    return text.lstrip("\ufeff").replace("\r\n", "\n").replace("\r", "\n").split("\n")


def pick_delimiter(line: str) -> str:
    """`;` when it outnumbers `,` in the line, else `,`."""
    return ";" if line.count(";") > line.count(",") else ","


def read_cells(text: str, delimiter: str, strict: bool = False) -> list[list[str]]:
    """Split CSV text into trimmed cell lists, dropping blank lines.

    Raises:
        csv.Error: On malformed quoting when `strict` is set
    """
    reader = csv.reader(io.StringIO(text), delimiter=delimiter, quotechar='"', strict=strict)
    rows = []
    for row in reader:
        cleaned = [cell.strip() for cell in row]
        if any(cleaned):
            rows.append(cleaned)
    return rows


def to_records(headers: list[str], rows: list[list[str]]) -> list[dict[str, str]]:
    """Map cell lists onto headers, padding or truncating ragged rows."""
    records = []
    width = len(headers)
    for row in rows:
        cells = list(row)
        while cells and cells[-1] == "":
            cells.pop()
        cells = cells[:width]
        cells.extend([""] * (width - len(cells)))
        records.append(dict(zip(headers, cells)))
    return records


def clean_headers(cells: list[str], marker: str = "") -> list[str]:
    """Trim header cells, strip a leading marker and drop the empty tail."""
    headers = []
    for cell in cells:
        name = cell.strip()
        if marker and name.startswith(marker):
            name = name[len(marker):].strip()
        headers.append(name)
    while headers and headers[-1] == "":
        headers.pop()
    return headers


class BaseDialect(ABC):
    """
    Base class for statement dialects.

    Each dialect recognizes one family of bank exports:
    - flat CSV with a single header line
    - bank exports with a metadata preamble before the header
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Dialect name for logging and diagnostics."""
        pass

    @property
    @abstractmethod
    def priority(self) -> int:
        """
        Priority for dialect selection.
        Higher = more specific, tried first.
        """
        pass

    @abstractmethod
    def detect(self, sample: str) -> bool:
        """
        Check if this dialect can read the statement.

        Args:
            sample: Leading part of the statement text

        Returns:
            True if this dialect should parse the statement
        """
        pass

    @abstractmethod
    def parse(self, text: str) -> ParsedStatement:
        """
        Parse the full statement.

        Raises:
            ParseError: If the structure cannot be read
        """
        pass
