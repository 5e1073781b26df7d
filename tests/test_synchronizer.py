"""Tests for idempotent vulnerability synchronization."""

import threading

import pytest

from vulnsync.exceptions import PayloadError
from vulnsync.ingest.normalizer import IssuesSchema, Normalizer
from vulnsync.ingest.synchronizer import Synchronizer
from vulnsync.models import (
    Component,
    Cwe,
    NormalizedVulnerability,
    Severity,
    Vulnerability,
    VulnerableSoftware,
)

LODASH = Component(uuid="c-lodash", name="lodash", purl="pkg:npm/lodash@4.17.20")


def _software(**bounds) -> VulnerableSoftware:
    return VulnerableSoftware(purl_type="npm", purl_name="lodash", **bounds)


def _normalized(vuln_id: str = "SNYK-JS-LODASH-1040724", software=None, **kwargs) -> NormalizedVulnerability:
    return NormalizedVulnerability(
        vulnerability=Vulnerability(vuln_id=vuln_id, **kwargs),
        software=software if software is not None else [_software(end_excluding="4.17.21")],
    )


class TestSynchronize:
    def test_creates_vulnerability_and_software(self, store):
        with store.session() as session:
            result = Synchronizer().synchronize(session, _normalized(title="Command Injection", cwes=[Cwe(cwe_id=78)]))

        assert result.id is not None
        assert result.title == "Command Injection"
        assert [c.cwe_id for c in result.cwes] == [78]
        assert len(result.vulnerable_software) == 1
        assert result.vulnerable_software[0].id is not None

    def test_idempotent_on_rerun(self, store, load_fixture):
        body = load_fixture("snyk_issues_lodash.json")
        normalizer = Normalizer(IssuesSchema())
        synchronizer = Synchronizer()

        for _ in range(2):
            with store.session() as session:
                for normalized in normalizer.normalize(body, LODASH, session):
                    synchronizer.synchronize(session, normalized)

        with store.session() as session:
            assert session.count_vulnerabilities() == 2
            # <4.17.21, >=3.0.0 <4.17.21, =2.4.2
            assert session.count_software() == 3
            injection = session.get_vulnerability("SNYK", "SNYK-JS-LODASH-1040724")
        assert len(injection.vulnerable_software) == 2

    def test_second_run_replaces_software_list(self, store):
        synchronizer = Synchronizer()
        with store.session() as session:
            synchronizer.synchronize(session, _normalized(software=[
                _software(end_excluding="1.0"), _software(end_excluding="2.0"),
            ]))
            result = synchronizer.synchronize(session, _normalized(software=[
                _software(end_excluding="3.0"),
            ]))

        assert [vs.end_excluding for vs in result.vulnerable_software] == ["3.0"]

    def test_last_write_wins_for_fields(self, store):
        synchronizer = Synchronizer()
        with store.session() as session:
            synchronizer.synchronize(session, _normalized(
                title="Old", severity=Severity.LOW, cvss_v3_base_score=3.1, cwes=[Cwe(cwe_id=78)],
            ))
            result = synchronizer.synchronize(session, _normalized(title="New", severity=Severity.HIGH))

        assert result.title == "New"
        assert result.severity is Severity.HIGH
        assert result.cvss_v3_base_score is None
        assert result.cwes == []

    def test_empty_software_list_clears_association(self, store):
        synchronizer = Synchronizer()
        with store.session() as session:
            synchronizer.synchronize(session, _normalized())
            result = synchronizer.synchronize(session, _normalized(software=[]))
            assert session.count_software() == 1
        assert result.vulnerable_software == []

    def test_identical_bounds_share_one_record(self, store):
        synchronizer = Synchronizer()
        with store.session() as session:
            a = synchronizer.synchronize(session, _normalized("SNYK-A"))
            b = synchronizer.synchronize(session, _normalized("SNYK-B"))
            assert session.count_software() == 1
        assert a.vulnerable_software[0].id == b.vulnerable_software[0].id

    def test_missing_vuln_id_rejected(self, store):
        with store.session() as session:
            with pytest.raises(PayloadError):
                Synchronizer().synchronize(session, _normalized(vuln_id=None))
            assert session.count_vulnerabilities() == 0
            assert session.count_software() == 0

    def test_concurrent_sessions_keep_one_record(self, store):
        synchronizer = Synchronizer()
        errors: list[Exception] = []

        def _sync(vuln_id: str) -> None:
            try:
                with store.session() as session:
                    synchronizer.synchronize(session, _normalized(vuln_id))
            except Exception as exc:
                errors.append(exc)

        threads = [threading.Thread(target=_sync, args=(f"SNYK-{i % 3}",)) for i in range(12)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        with store.session() as session:
            assert session.count_vulnerabilities() == 3
            assert session.count_software() == 1
