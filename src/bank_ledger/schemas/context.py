"""
Organisation scope.

Every query and write in the ledger is scoped to one organisation. The scope
is an explicit value handed to each call, never module-level state.
"""

import re
from dataclasses import dataclass

# documents/<org-uuid>/YYYY/MM/<uuid>-file.csv
STORAGE_PATH_ORG_RE = re.compile(r"^documents/([0-9a-fA-F-]{36})/")


@dataclass(frozen=True)
class OrgContext:
    """Organisation boundary for a single call."""

    org_id: str

    def __post_init__(self) -> None:
        if not self.org_id or not str(self.org_id).strip():
            raise ValueError("org_id must be a non-empty string")

    @classmethod
    def from_storage_path(cls, storage_path: str) -> "OrgContext | None":
        """Derive the organisation from a stored statement path, if possible."""
        match = STORAGE_PATH_ORG_RE.match(storage_path or "")
        if not match:
            return None
        return cls(org_id=match.group(1))
