"""Normalization of Snyk payloads into Vulnerability and VulnerableSoftware models.

The API has shipped more than one payload shape. Each shape gets a
PayloadSchema that decodes raw JSON into schema-neutral VendorRecords;
the Normalizer maps VendorRecords to the internal model.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ValidationError

from vulnsync.cwe import CweResolver
from vulnsync.exceptions import ConfigurationError, PayloadError
from vulnsync.ingest.ranges import parse_ranges
from vulnsync.models import (
    Component,
    Cwe,
    NormalizedVulnerability,
    Severity,
    Vulnerability,
    VulnerableSoftware,
)
from vulnsync.store import StoreSession

logger = logging.getLogger(__name__)


class VendorRecord(BaseModel):
    """One vulnerability entry as decoded from any payload schema."""
    vuln_id: str | None = None
    title: str | None = None
    description: str | None = None
    created_at: str | None = None
    published_at: str | None = None
    updated_at: str | None = None
    reference_urls: list[str] = []
    problems: list[Any] = []
    severities: list[dict] = []
    ranges: list[Any] = []
    package_url: str | None = None


def _as_list(value: Any) -> list:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def _as_dict(value: Any) -> dict:
    return value if isinstance(value, dict) else {}


def _text(value: Any) -> str | None:
    """Scalar payload value as a string; numbers are stringified, containers dropped."""
    if value is None or isinstance(value, (dict, list)):
        return None
    return str(value)


def _reference_urls(references: Any) -> list[str]:
    urls = []
    for ref in _as_list(references):
        url = _text(_as_dict(ref).get("url"))
        if url:
            urls.append(url)
    return urls


def _build_record(**fields: Any) -> VendorRecord | None:
    """Build a VendorRecord, skipping the entry when it does not validate."""
    try:
        return VendorRecord(**fields)
    except ValidationError as exc:
        logger.warning("Skipping malformed entry %s: %s", fields.get("vuln_id"), exc)
        return None


def _representations(coordinates: Any) -> list[Any]:
    """Collect range representations across every coordinate."""
    ranges: list[Any] = []
    for coordinate in _as_list(coordinates):
        ranges.extend(_as_list(_as_dict(coordinate).get("representation")))
    return ranges


def _meta_package_url(body: dict) -> str | None:
    return _text(_as_dict(_as_dict(body.get("meta")).get("package")).get("url")) or None


# --- Payload schemas ---

class PayloadSchema(ABC):
    """Decoder for one version of the vendor payload."""

    version: str = ""

    @abstractmethod
    def decode(self, body: dict) -> list[VendorRecord]:
        """Decode a response body into vendor records."""


class IssuesSchema(PayloadSchema):
    """``data[]`` of issues, each with an ``attributes`` object.

    Only issues of type ``package_vulnerability`` are vulnerabilities;
    license and other issue types are ignored.
    """

    version = "2022-04-06~experimental"

    def decode(self, body: dict) -> list[VendorRecord]:
        package_url = _meta_package_url(body)
        records: list[VendorRecord] = []
        for item in _as_list(body.get("data")):
            item = _as_dict(item)
            attributes = item.get("attributes")
            if not isinstance(attributes, dict):
                logger.debug("Issue %s has no attributes - skipping", item.get("id"))
                continue
            issue_type = str(attributes.get("type") or "")
            if issue_type.lower() != "package_vulnerability":
                logger.debug("Issue %s has type %r - skipping", item.get("id"), issue_type)
                continue
            slots = _as_dict(attributes.get("slots"))
            record = _build_record(
                vuln_id=_text(item.get("id")),
                title=_text(attributes.get("title")),
                description=_text(attributes.get("description")),
                created_at=_text(attributes.get("created_at")),
                published_at=_text(slots.get("publication_time")),
                updated_at=_text(attributes.get("updated_at")),
                reference_urls=_reference_urls(slots.get("references")),
                problems=_as_list(attributes.get("problems")),
                severities=[s for s in _as_list(attributes.get("severities")) if isinstance(s, dict)],
                ranges=_representations(attributes.get("coordinates")),
                package_url=package_url,
            )
            if record is not None:
                records.append(record)
        return records


class VulnerabilitiesSchema(PayloadSchema):
    """``data`` package object(s) carrying ``attributes.vulnerabilities[]``."""

    version = "2022-09-15"

    def decode(self, body: dict) -> list[VendorRecord]:
        meta_url = _meta_package_url(body)
        records: list[VendorRecord] = []
        for package in _as_list(body.get("data")):
            attributes = _as_dict(_as_dict(package).get("attributes"))
            package_url = _text(attributes.get("purl")) or meta_url
            for entry in _as_list(attributes.get("vulnerabilities")):
                entry = _as_dict(entry)
                record = _build_record(
                    vuln_id=_text(entry.get("id")),
                    title=_text(entry.get("title")),
                    description=_text(entry.get("description")),
                    created_at=_text(entry.get("created_at")),
                    published_at=_text(entry.get("published_at")),
                    updated_at=_text(entry.get("updated_at")),
                    reference_urls=_reference_urls(entry.get("references")),
                    problems=_as_list(entry.get("problems")),
                    severities=[s for s in _as_list(entry.get("severities")) if isinstance(s, dict)],
                    ranges=_representations(entry.get("coordinates")),
                    package_url=package_url,
                )
                if record is not None:
                    records.append(record)
        return records


SCHEMAS: dict[str, type[PayloadSchema]] = {
    IssuesSchema.version: IssuesSchema,
    VulnerabilitiesSchema.version: VulnerabilitiesSchema,
}


def get_schema(version: str) -> PayloadSchema:
    """Select the payload decoder for an API version tag."""
    try:
        return SCHEMAS[version]()
    except KeyError:
        raise ConfigurationError(
            f"Unsupported API version {version!r}; expected one of {sorted(SCHEMAS)}"
        ) from None


# --- Field helpers ---

def _parse_datetime(dt_str: str | None) -> datetime | None:
    """Parse an ISO-8601 timestamp; unparseable values become None."""
    if not dt_str:
        return None
    try:
        return datetime.fromisoformat(str(dt_str).replace("Z", "+00:00"))
    except ValueError:
        logger.debug("Unparseable timestamp %r", dt_str)
        return None


def _base_score(score: Any) -> float | None:
    if isinstance(score, dict):
        score = score.get("base_score")
    if score is None or isinstance(score, bool):
        return None
    try:
        return float(score)
    except (TypeError, ValueError):
        logger.debug("Unparseable base score %r", score)
        return None


def format_references(urls: list[str]) -> str | None:
    """Render reference URLs as a Markdown bullet list of links."""
    if not urls:
        return None
    return "".join(f"* [{url}]({url})\n" for url in urls)


# --- Normalizer ---

class Normalizer:
    """Map decoded vendor records onto the internal vulnerability model."""

    def __init__(
        self,
        schema: PayloadSchema,
        cwe_resolver: CweResolver | None = None,
        source: str = "SNYK",
    ):
        self.schema = schema
        self.cwe_resolver = cwe_resolver or CweResolver()
        self.source = source

    def normalize(
        self,
        body: dict,
        component: Component | None = None,
        session: StoreSession | None = None,
    ) -> list[NormalizedVulnerability]:
        """Normalize every vulnerability in a response body.

        The component's purl is used when the payload carries no package
        coordinate of its own.
        """
        normalized: list[NormalizedVulnerability] = []
        for record in self.decode(body):
            try:
                normalized.append(self.normalize_record(record, self.package_url(record, component), session))
            except PayloadError as exc:
                logger.warning("Skipping vulnerability %s: %s", record.vuln_id, exc)
        return normalized

    def decode(self, body: dict) -> list[VendorRecord]:
        return self.schema.decode(body)

    @staticmethod
    def package_url(record: VendorRecord, component: Component | None = None) -> str | None:
        """The payload's package coordinate, else the component's purl."""
        return record.package_url or (component.purl if component else None)

    def normalize_record(
        self,
        record: VendorRecord,
        purl: str | None,
        session: StoreSession | None = None,
    ) -> NormalizedVulnerability:
        """Map one vendor record; raises PayloadError when it cannot be represented."""
        try:
            vulnerability = Vulnerability(
                source=self.source,
                vuln_id=record.vuln_id,
                title=record.title,
                description=record.description,
                references=format_references(record.reference_urls),
                created=_parse_datetime(record.created_at),
                published=_parse_datetime(record.published_at),
                updated=_parse_datetime(record.updated_at),
                cwes=self._resolve_cwes(record.problems),
            )
        except ValidationError as exc:
            raise PayloadError(f"Malformed vulnerability {record.vuln_id}: {exc}") from exc

        if record.severities:
            cvss = record.severities[0]
            vulnerability.severity = Severity.from_level(cvss.get("level"))
            vulnerability.cvss_v3_vector = _text(cvss.get("vector"))
            vulnerability.cvss_v3_base_score = _base_score(cvss.get("score"))

        software: list[VulnerableSoftware] = []
        if record.ranges:
            software = self._resolve_software(purl, record.ranges, session)
        return NormalizedVulnerability(vulnerability=vulnerability, software=software)

    def _resolve_cwes(self, problems: list[Any]) -> list[Cwe]:
        cwes: list[Cwe] = []
        seen: set[int] = set()
        for problem in problems:
            cwe = self.cwe_resolver.resolve(problem)
            if cwe is not None and cwe.cwe_id not in seen:
                seen.add(cwe.cwe_id)
                cwes.append(cwe)
        return cwes

    def _resolve_software(
        self,
        purl: str | None,
        ranges: list[Any],
        session: StoreSession | None,
    ) -> list[VulnerableSoftware]:
        """Parse ranges and swap in stored records that share the same identity."""
        parsed = parse_ranges(purl, ranges)
        if parsed is None:
            return []

        software: list[VulnerableSoftware] = []
        seen: set[tuple] = set()
        for candidate in parsed:
            if candidate.identity in seen:
                continue
            seen.add(candidate.identity)
            stored = session.find_software(candidate) if session is not None else None
            software.append(stored or candidate)
        return software
