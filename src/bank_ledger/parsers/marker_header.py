"""
Marker-header dialect.

Some banks (mBank) prefix the export with account metadata lines. The real
header is the first line containing every marker token, and each header
cell carries a leading `#` that is not part of the column name:

    #Data operacji;#Opis operacji;#Rachunek;#Kategoria;#Kwota;
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


class MarkerHeaderDialect(BaseDialect):
    """Header located by scanning for known marker tokens."""

    def __init__(
        self,
        markers: tuple[str, ...] = ("#Data operacji", "#Opis operacji"),
        marker_char: str = "#",
        dialect_name: str = "mbank",
    ):
        self.markers = markers
        self.marker_char = marker_char
        self._name = dialect_name

    @property
    def name(self) -> str:
        return self._name

    @property
    def priority(self) -> int:
        return 50

    def detect(self, sample: str) -> bool:
        return self._find_header_index(normalise_lines(sample)) >= 0

    def parse(self, text: str) -> ParsedStatement:
        lines = normalise_lines(text)
        header_idx = self._find_header_index(lines)
        if header_idx < 0:
            markers = " / ".join(self.markers)
            raise ParseError("find_header", f"{self.name} header not found ({markers})")

        header_line = lines[header_idx]
        delimiter = pick_delimiter(header_line)
        headers = clean_headers(header_line.split(delimiter), marker=self.marker_char)

        # Exports end every row with a delimiter; quoting is not reliable
        try:
            rows = read_cells("\n".join(lines[header_idx + 1:]), delimiter)
        except csv.Error as e:
            raise ParseError(
                "parse_csv", f"CSV parsing failed: {e}", {"delimiter": delimiter}
            ) from e

        return ParsedStatement(
            dialect=self.name,
            delimiter=delimiter,
            headers=headers,
            rows=to_records(headers, rows),
            header_index=header_idx,
        )

    def _find_header_index(self, lines: list[str]) -> int:
        for idx, line in enumerate(lines):
            if all(marker in line for marker in self.markers):
                return idx
        return -1
