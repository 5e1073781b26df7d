"""Idempotent merge of normalized vulnerabilities into the store."""

from __future__ import annotations

import logging

from vulnsync.exceptions import PayloadError, StoreError
from vulnsync.models import NormalizedVulnerability, Vulnerability
from vulnsync.store import StoreSession

logger = logging.getLogger(__name__)


class Synchronizer:
    """Upsert vulnerabilities keyed by (source, vuln_id).

    Mutable fields are overwritten with the supplied values (last write
    wins) and the software list is replaced, never appended to.
    """

    def synchronize(self, session: StoreSession, normalized: NormalizedVulnerability) -> Vulnerability:
        """Persist a normalized vulnerability and return the stored record."""
        vulnerability = normalized.vulnerability
        if not vulnerability.vuln_id:
            raise PayloadError(f"{vulnerability.source} vulnerability has no identifier")

        with session.transaction():
            software_ids: list[int] = []
            for software in normalized.software:
                stored = software if software.id is not None else session.upsert_software(software)
                if stored.id not in software_ids:
                    software_ids.append(stored.id)

            vulnerability_pk = session.upsert_vulnerability(vulnerability)
            session.replace_cwes(vulnerability_pk, vulnerability.cwes)
            session.replace_software(vulnerability_pk, software_ids)

        synchronized = session.get_vulnerability(vulnerability.source, vulnerability.vuln_id)
        if synchronized is None:
            raise StoreError(f"{vulnerability.source} {vulnerability.vuln_id} missing after synchronization")
        logger.debug(
            "Synchronized %s %s with %d vulnerable software record(s)",
            synchronized.source, synchronized.vuln_id, len(synchronized.vulnerable_software),
        )
        return synchronized
