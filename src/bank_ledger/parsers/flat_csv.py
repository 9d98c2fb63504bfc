"""
Flat CSV dialect: one header line followed by data rows.
"""

import csv

from .base import (
    BaseDialect,
    ParsedStatement,
    ParseError,
    clean_headers,
    normalise_lines,
    pick_delimiter,
    read_cells,
    to_records,
)


class FlatCSVDialect(BaseDialect):
    """Single header line; `;` or `,` delimited, chosen from the first line."""

    @property
    def name(self) -> str:
        return "flat_csv"

    @property
    def priority(self) -> int:
        return 10

    def detect(self, sample: str) -> bool:
        first = self._first_line(normalise_lines(sample))
        if first is None:
            return False
        delimiter = pick_delimiter(first)
        return first.count(delimiter) >= 1

    def parse(self, text: str) -> ParsedStatement:
        lines = normalise_lines(text)
        first = self._first_line(lines)
        delimiter = pick_delimiter(first or "")

        try:
            rows = read_cells("\n".join(lines), delimiter, strict=True)
        except csv.Error as e:
            raise ParseError(
                "parse_csv", f"CSV parsing failed: {e}", {"delimiter": delimiter}
            ) from e

        if not rows:
            raise ParseError("find_header", "No header line found", {"delimiter": delimiter})

        headers = clean_headers(rows[0])
        if len([h for h in headers if h]) < 2:
            raise ParseError(
                "find_header",
                f"Header line has fewer than two named columns: {rows[0]!r}",
                {"delimiter": delimiter},
            )

        return ParsedStatement(
            dialect=self.name,
            delimiter=delimiter,
            headers=headers,
            rows=to_records(headers, rows[1:]),
            header_index=lines.index(first),
        )

    @staticmethod
    def _first_line(lines: list[str]) -> str | None:
        for line in lines:
            if line.strip():
                return line
        return None
