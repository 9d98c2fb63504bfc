"""
Typed outcome of a statement import.

Import never raises past its boundary for parse, validation or persistence
problems; it returns one of these instead so a caller can always show the
counts reached before a failure.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ImportStep(str, Enum):
    """Pipeline step at which an import stopped."""

    MISSING_ORG = "missing_org"
    FIND_HEADER = "find_header"
    PARSE_CSV = "parse_csv"
    PARSED_0_ROWS = "parsed_0_rows"
    MAP_0_VALID = "map_0_valid"
    INSERT = "insert"


@dataclass
class ImportResult:
    """Counts and status of one import run."""

    ok: bool
    parsed: int = 0
    valid: int = 0
    invalid: int = 0
    inserted: int = 0
    skipped: int = 0
    step: ImportStep | None = None
    error: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)
    dialect: str | None = None

    @classmethod
    def failure(
        cls,
        step: ImportStep,
        error: str,
        extra: dict[str, Any] | None = None,
        **counts: int,
    ) -> "ImportResult":
        """Build a failed result at `step`, keeping any counts reached."""
        return cls(ok=False, step=step, error=error, extra=extra or {}, **counts)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        data: dict[str, Any] = {
            "ok": self.ok,
            "parsed": self.parsed,
            "valid": self.valid,
            "invalid": self.invalid,
            "inserted": self.inserted,
            "skipped": self.skipped,
        }
        if self.dialect:
            data["dialect"] = self.dialect
        if not self.ok:
            data["step"] = self.step.value if self.step else None
            data["error"] = self.error
            if self.extra:
                data["extra"] = self.extra
        return data
