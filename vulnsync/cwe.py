"""Weakness-classification (CWE) resolution."""

from __future__ import annotations

import re

from vulnsync.models import Cwe

_CWE_PATTERN = re.compile(r"^(?:CWE-)?(\d+)$", re.IGNORECASE)


class CweResolver:
    """Resolve CWE references such as ``"CWE-79"`` to Cwe records.

    With a catalog, only ids present in it resolve. Without one, any
    well-formed reference resolves to a nameless Cwe.
    """

    def __init__(self, catalog: dict[int, str] | None = None):
        self.catalog = catalog

    def parse_id(self, reference) -> int | None:
        if isinstance(reference, dict):
            # problem objects look like {"id": "CWE-79", "source": "CWE"}
            source = reference.get("source")
            if source and str(source).upper() != "CWE":
                return None
            reference = reference.get("id")
        if isinstance(reference, int):
            return reference
        if not isinstance(reference, str):
            return None
        match = _CWE_PATTERN.match(reference.strip())
        return int(match.group(1)) if match else None

    def resolve(self, reference) -> Cwe | None:
        """Return the Cwe for a reference, or None if it cannot be resolved."""
        cwe_id = self.parse_id(reference)
        if cwe_id is None:
            return None
        if self.catalog is None:
            return Cwe(cwe_id=cwe_id)
        if cwe_id not in self.catalog:
            return None
        return Cwe(cwe_id=cwe_id, name=self.catalog[cwe_id])
