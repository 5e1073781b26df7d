"""Pydantic models for components, vulnerabilities and version-range predicates."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from packageurl import PackageURL
from pydantic import BaseModel, model_validator

from vulnsync.purl import parse_purl


# --- Enums ---

class Severity(str, Enum):
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"
    UNASSIGNED = "UNASSIGNED"

    @classmethod
    def from_level(cls, level: object) -> Severity:
        """Case-insensitive lookup; anything unrecognized is UNASSIGNED."""
        if not level:
            return cls.UNASSIGNED
        try:
            return cls(str(level).strip().upper())
        except ValueError:
            return cls.UNASSIGNED


class IndexAction(str, Enum):
    COMMIT = "commit"


# --- Catalog ---

class Component(BaseModel):
    """A catalog component. Owned by the catalog, read-only here."""
    uuid: str
    name: str = ""
    purl: str | None = None

    @property
    def coordinate(self) -> PackageURL | None:
        return parse_purl(self.purl)


class Cwe(BaseModel):
    cwe_id: int
    name: str = ""


# --- Version ranges ---

class VersionBounds(BaseModel):
    start_including: str | None = None
    start_excluding: str | None = None
    end_including: str | None = None
    end_excluding: str | None = None

    @property
    def is_empty(self) -> bool:
        return not any((
            self.start_including, self.start_excluding,
            self.end_including, self.end_excluding,
        ))

    @property
    def is_exact(self) -> bool:
        return (
            self.start_including is not None
            and self.start_including == self.end_including
            and self.start_excluding is None
            and self.end_excluding is None
        )


class VulnerableSoftware(BaseModel):
    """One affected-version predicate for a package.

    ``version`` is derived from the bounds: it is set only for exact-match
    predicates and then equals that bound.
    """
    id: int | None = None
    purl_type: str
    purl_namespace: str | None = None
    purl_name: str
    version: str | None = None
    start_including: str | None = None
    start_excluding: str | None = None
    end_including: str | None = None
    end_excluding: str | None = None
    vulnerable: bool = True

    @model_validator(mode="after")
    def derive_version(self) -> VulnerableSoftware:
        self.version = self.bounds.start_including if self.bounds.is_exact else None
        return self

    @property
    def bounds(self) -> VersionBounds:
        return VersionBounds(
            start_including=self.start_including,
            start_excluding=self.start_excluding,
            end_including=self.end_including,
            end_excluding=self.end_excluding,
        )

    @property
    def identity(self) -> tuple[str | None, ...]:
        return (
            self.purl_type,
            self.purl_namespace,
            self.purl_name,
            self.start_including,
            self.start_excluding,
            self.end_including,
            self.end_excluding,
        )

    @classmethod
    def from_bounds(cls, coordinate: PackageURL, bounds: VersionBounds) -> VulnerableSoftware:
        return cls(
            purl_type=coordinate.type,
            purl_namespace=coordinate.namespace,
            purl_name=coordinate.name,
            **bounds.model_dump(),
        )


# --- Vulnerabilities ---

class Vulnerability(BaseModel):
    """A vulnerability keyed by (source, vuln_id)."""
    id: int | None = None
    source: str = "SNYK"
    vuln_id: str | None = None
    title: str | None = None
    description: str | None = None
    references: str | None = None
    created: datetime | None = None
    published: datetime | None = None
    updated: datetime | None = None
    severity: Severity = Severity.UNASSIGNED
    cvss_v3_base_score: float | None = None
    cvss_v3_vector: str | None = None
    cwes: list[Cwe] = []
    vulnerable_software: list[VulnerableSoftware] = []


class NormalizedVulnerability(BaseModel):
    """Normalizer output: a vulnerability and the software list to attach to it."""
    vulnerability: Vulnerability
    software: list[VulnerableSoftware] = []


# --- Events and results ---

class AnalysisEvent(BaseModel):
    """Inbound request to analyze a set of components."""
    components: list[Component] = []


class IndexEvent(BaseModel):
    action: IndexAction = IndexAction.COMMIT
    entity: str = "vulnerability"


class AnalysisSummary(BaseModel):
    """Result of one analysis run."""
    components_submitted: int = 0
    components_analyzed: int = 0
    vulnerabilities_synchronized: int = 0
    elapsed_seconds: float = 0.0
    errors: list[str] = []
