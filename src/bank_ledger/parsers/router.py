"""
Statement parser - chooses a dialect and reads rows.
"""

import logging

from .base import BaseDialect, ParsedStatement, ParseError, normalise_lines, pick_delimiter
from .flat_csv import FlatCSVDialect
from .marker_header import MarkerHeaderDialect

logger = logging.getLogger(__name__)

# Lines handed to dialect detectors; bank preambles are well under this
DETECTION_SAMPLE_LINES = 200

# Encodings tried, in order, when the statement arrives as bytes
STATEMENT_ENCODINGS = ("utf-8-sig", "cp1250")


def decode_statement(data: bytes | str) -> str:
    """Decode statement bytes, falling back to the Central European code page."""
    if isinstance(data, str):
        return data
    for encoding in STATEMENT_ENCODINGS[:-1]:
        try:
            return data.decode(encoding)
        except UnicodeDecodeError:
            continue
    return data.decode(STATEMENT_ENCODINGS[-1], errors="replace")


class StatementParser:
    """
    Routes a statement to the first dialect that recognizes it.

    Tries dialects in priority order:
    1. Marker-header exports (metadata preamble, `#`-prefixed header)
    2. Flat CSV (single header line)

    Zero parsed rows is a hard failure: a header-detection bug must surface
    instead of silently importing nothing.
    """

    def __init__(self, dialects: list[BaseDialect] | None = None, debug_lines: int = 40):
        """Initialize with default dialects unless given explicitly."""
        # Sorted copy by priority (highest first); the caller's list is left alone
        self.dialects: list[BaseDialect] = sorted(
            dialects or [MarkerHeaderDialect(), FlatCSVDialect()],
            key=lambda d: -d.priority,
        )
        self.debug_lines = debug_lines

    def register(self, dialect: BaseDialect) -> None:
        """Add a dialect and keep the priority order."""
        self.dialects.append(dialect)
        self.dialects.sort(key=lambda d: -d.priority)

    def parse(self, data: bytes | str) -> ParsedStatement:
        """
        Parse a statement of unknown dialect.

        Raises:
            ParseError: With step find_header, parse_csv or parsed_0_rows;
                `extra` carries the delimiter and the first raw lines
        """
        text = decode_statement(data)
        lines = normalise_lines(text)
        sample = "\n".join(lines[:DETECTION_SAMPLE_LINES])

        dialect = self._select(sample)
        if dialect is None:
            first = next((line for line in lines if line.strip()), "")
            raise ParseError(
                "find_header",
                "No known statement dialect recognized the header",
                self._debug_extra(lines, pick_delimiter(first)),
            )

        try:
            statement = dialect.parse(text)
        except ParseError as e:
            e.extra = {**self._debug_extra(lines, e.extra.get("delimiter")), **e.extra}
            e.extra["dialect"] = dialect.name
            raise

        logger.info(
            "Parsed statement as %s (delimiter %r): %d rows, headers=%s",
            statement.dialect,
            statement.delimiter,
            len(statement.rows),
            statement.headers,
        )

        if not statement.rows:
            extra = self._debug_extra(lines, statement.delimiter)
            extra["dialect"] = statement.dialect
            extra["headers"] = statement.headers
            raise ParseError("parsed_0_rows", "Parsed 0 rows from statement", extra)

        return statement

    def _select(self, sample: str) -> BaseDialect | None:
        for dialect in self.dialects:
            if dialect.detect(sample):
                logger.debug("Dialect %s matched", dialect.name)
                return dialect
        return None

    def _debug_extra(self, lines: list[str], delimiter: str | None) -> dict:
        return {"delimiter": delimiter, "first_lines": lines[: self.debug_lines]}
