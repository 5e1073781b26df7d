"""Tests for the SQLite vulnerability store."""

import sqlite3
from datetime import datetime, timezone

import pytest

from vulnsync.exceptions import StoreError
from vulnsync.models import Cwe, Severity, Vulnerability, VulnerableSoftware
from vulnsync.store import VulnerabilityStore


def _software(**bounds) -> VulnerableSoftware:
    return VulnerableSoftware(purl_type="npm", purl_name="lodash", **bounds)


class TestVulnerableSoftware:
    def test_find_missing(self, store):
        with store.session() as session:
            assert session.find_software(_software(end_excluding="4.17.21")) is None

    def test_upsert_assigns_id(self, store):
        with store.session() as session:
            stored = session.upsert_software(_software(end_excluding="4.17.21"))
            assert stored.id is not None
            assert session.find_software(_software(end_excluding="4.17.21")).id == stored.id

    def test_upsert_same_identity_reuses_row(self, store):
        with store.session() as session:
            first = session.upsert_software(_software(start_including="3.0.0", end_excluding="4.17.21"))
            second = session.upsert_software(_software(start_including="3.0.0", end_excluding="4.17.21"))
            assert first.id == second.id
            assert session.count_software() == 1

    def test_null_namespace_matches(self, store):
        with store.session() as session:
            session.upsert_software(_software(end_excluding="1.0"))
            found = session.find_software(VulnerableSoftware(
                purl_type="npm", purl_namespace=None, purl_name="lodash", end_excluding="1.0",
            ))
            assert found is not None

    def test_different_bounds_are_distinct(self, store):
        with store.session() as session:
            session.upsert_software(_software(end_excluding="4.17.21"))
            session.upsert_software(_software(end_including="4.17.21"))
            assert session.count_software() == 2

    def test_visible_across_sessions(self, store):
        with store.session() as session:
            stored = session.upsert_software(_software(end_excluding="2.0"))
        with store.session() as other:
            assert other.find_software(_software(end_excluding="2.0")).id == stored.id


class TestVulnerabilities:
    def _vulnerability(self, **kwargs) -> Vulnerability:
        defaults = dict(
            vuln_id="SNYK-JS-LODASH-1018905",
            title="ReDoS",
            severity=Severity.MEDIUM,
            created=datetime(2021, 2, 15, 11, 50, tzinfo=timezone.utc),
        )
        defaults.update(kwargs)
        return Vulnerability(**defaults)

    def test_upsert_and_get(self, store):
        with store.session() as session:
            pk = session.upsert_vulnerability(self._vulnerability())
            stored = session.get_vulnerability("SNYK", "SNYK-JS-LODASH-1018905")
        assert stored.id == pk
        assert stored.title == "ReDoS"
        assert stored.severity is Severity.MEDIUM
        assert stored.created == datetime(2021, 2, 15, 11, 50, tzinfo=timezone.utc)

    def test_upsert_overwrites_by_natural_key(self, store):
        with store.session() as session:
            first = session.upsert_vulnerability(self._vulnerability(title="v1", cvss_v3_base_score=5.0))
            second = session.upsert_vulnerability(self._vulnerability(title="v2"))
            stored = session.get_vulnerability("SNYK", "SNYK-JS-LODASH-1018905")
            assert first == second
            assert stored.title == "v2"
            assert stored.cvss_v3_base_score is None
            assert session.count_vulnerabilities() == 1

    def test_same_id_different_source(self, store):
        with store.session() as session:
            session.upsert_vulnerability(self._vulnerability(source="SNYK"))
            session.upsert_vulnerability(self._vulnerability(source="OSV"))
            assert session.count_vulnerabilities() == 2

    def test_missing_vuln_id_rejected(self, store):
        with store.session() as session:
            with pytest.raises(StoreError):
                session.upsert_vulnerability(self._vulnerability(vuln_id=None))

    def test_get_missing(self, store):
        with store.session() as session:
            assert session.get_vulnerability("SNYK", "nope") is None

    def test_replace_software_and_cwes(self, store):
        with store.session() as session:
            pk = session.upsert_vulnerability(self._vulnerability())
            a = session.upsert_software(_software(end_excluding="1.0"))
            b = session.upsert_software(_software(end_excluding="2.0"))
            session.replace_software(pk, [b.id, a.id])
            session.replace_cwes(pk, [Cwe(cwe_id=400), Cwe(cwe_id=79)])

            stored = session.get_vulnerability("SNYK", "SNYK-JS-LODASH-1018905")
            assert [vs.end_excluding for vs in stored.vulnerable_software] == ["2.0", "1.0"]
            assert [c.cwe_id for c in stored.cwes] == [79, 400]

            session.replace_software(pk, [a.id])
            session.replace_cwes(pk, [])
            stored = session.get_vulnerability("SNYK", "SNYK-JS-LODASH-1018905")
            assert [vs.id for vs in stored.vulnerable_software] == [a.id]
            assert stored.cwes == []

    def test_transaction_rolls_back(self, store):
        with store.session() as session:
            with pytest.raises(RuntimeError):
                with session.transaction():
                    session.upsert_vulnerability(self._vulnerability())
                    raise RuntimeError("boom")
            assert session.count_vulnerabilities() == 0


class TestComponentFindings:
    def test_add_vulnerability_is_idempotent(self, store):
        with store.session() as session:
            pk = session.upsert_vulnerability(Vulnerability(vuln_id="SNYK-1"))
            assert session.add_vulnerability(pk, "c-1", "SNYK_ANALYZER") is True
            assert session.add_vulnerability(pk, "c-1", "SNYK_ANALYZER") is False
            findings = session.get_component_vulnerabilities("c-1")
        assert [v.vuln_id for v in findings] == ["SNYK-1"]

    def test_component_without_findings(self, store):
        with store.session() as session:
            assert session.get_component_vulnerabilities("c-unknown") == []


class TestInMemoryStore:
    def test_sessions_share_memory_database(self):
        store = VulnerabilityStore(":memory:")
        try:
            with store.session() as session:
                session.upsert_vulnerability(Vulnerability(vuln_id="SNYK-1"))
            with store.session() as other:
                assert other.get_vulnerability("SNYK", "SNYK-1") is not None
        finally:
            store.close()


class TestTransactionFailures:
    def test_failed_commit_raises_store_error_and_rolls_back(self, store):
        with store.session() as session:
            with pytest.raises(StoreError, match="FOREIGN KEY"):
                with session.transaction():
                    # checked at COMMIT instead of per statement
                    session._execute("PRAGMA defer_foreign_keys = ON")
                    session._execute("INSERT INTO vulnerability_cwe (vulnerability_id, cwe_id) VALUES (999, 79)")
            assert session._conn.in_transaction is False

            session.upsert_vulnerability(Vulnerability(vuln_id="SNYK-1"))
            assert session.count_vulnerabilities() == 1
            assert session._execute("SELECT COUNT(*) FROM vulnerability_cwe").fetchone()[0] == 0

    def test_lock_timeout_raises_store_error(self, tmp_path):
        db_path = str(tmp_path / "locked.db")
        store = VulnerabilityStore(db_path, busy_timeout=0.1)
        holder = sqlite3.connect(db_path, isolation_level=None)
        try:
            holder.execute("BEGIN IMMEDIATE")
            with store.session() as session:
                with pytest.raises(StoreError, match="locked"):
                    session.upsert_vulnerability(Vulnerability(vuln_id="SNYK-1"))
                holder.execute("ROLLBACK")
                session.upsert_vulnerability(Vulnerability(vuln_id="SNYK-1"))
                assert session.count_vulnerabilities() == 1
        finally:
            holder.close()
            store.close()
