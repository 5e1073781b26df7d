"""SQLite-backed vulnerability store.

Each unit of work opens its own StoreSession (a dedicated connection);
sessions are never shared between workers. Natural keys are enforced by
unique indexes so concurrent sessions cannot create duplicate records.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from vulnsync.exceptions import StoreError
from vulnsync.models import Cwe, Severity, Vulnerability, VulnerableSoftware

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS vulnerability (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    source TEXT NOT NULL,
    vuln_id TEXT NOT NULL,
    title TEXT,
    description TEXT,
    references_md TEXT,
    created TEXT,
    published TEXT,
    updated TEXT,
    severity TEXT NOT NULL,
    cvss_v3_base_score REAL,
    cvss_v3_vector TEXT,
    UNIQUE (source, vuln_id)
);

CREATE TABLE IF NOT EXISTS vulnerable_software (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    purl_type TEXT NOT NULL,
    purl_namespace TEXT,
    purl_name TEXT NOT NULL,
    version TEXT,
    start_including TEXT,
    start_excluding TEXT,
    end_including TEXT,
    end_excluding TEXT,
    vulnerable INTEGER NOT NULL DEFAULT 1
);

CREATE UNIQUE INDEX IF NOT EXISTS vulnerable_software_identity ON vulnerable_software (
    purl_type,
    IFNULL(purl_namespace, ''),
    purl_name,
    IFNULL(start_including, ''),
    IFNULL(start_excluding, ''),
    IFNULL(end_including, ''),
    IFNULL(end_excluding, '')
);

CREATE TABLE IF NOT EXISTS vulnerability_software (
    vulnerability_id INTEGER NOT NULL REFERENCES vulnerability (id),
    software_id INTEGER NOT NULL REFERENCES vulnerable_software (id),
    position INTEGER NOT NULL,
    PRIMARY KEY (vulnerability_id, software_id)
);

CREATE TABLE IF NOT EXISTS vulnerability_cwe (
    vulnerability_id INTEGER NOT NULL REFERENCES vulnerability (id),
    cwe_id INTEGER NOT NULL,
    name TEXT NOT NULL DEFAULT '',
    PRIMARY KEY (vulnerability_id, cwe_id)
);

CREATE TABLE IF NOT EXISTS component_vulnerability (
    component_uuid TEXT NOT NULL,
    vulnerability_id INTEGER NOT NULL REFERENCES vulnerability (id),
    analyzer TEXT NOT NULL,
    attributed_on TEXT NOT NULL,
    PRIMARY KEY (component_uuid, vulnerability_id)
);
"""

_IDENTITY_WHERE = """
    purl_type = ?
    AND IFNULL(purl_namespace, '') = IFNULL(?, '')
    AND purl_name = ?
    AND IFNULL(start_including, '') = IFNULL(?, '')
    AND IFNULL(start_excluding, '') = IFNULL(?, '')
    AND IFNULL(end_including, '') = IFNULL(?, '')
    AND IFNULL(end_excluding, '') = IFNULL(?, '')
"""

_SOFTWARE_FIELDS = (
    "id", "purl_type", "purl_namespace", "purl_name", "version", "start_including",
    "start_excluding", "end_including", "end_excluding", "vulnerable",
)
_SOFTWARE_COLUMNS = ", ".join(_SOFTWARE_FIELDS)


def _dt_to_text(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _text_to_dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _row_to_software(row: sqlite3.Row) -> VulnerableSoftware:
    return VulnerableSoftware(
        id=row["id"],
        purl_type=row["purl_type"],
        purl_namespace=row["purl_namespace"],
        purl_name=row["purl_name"],
        start_including=row["start_including"],
        start_excluding=row["start_excluding"],
        end_including=row["end_including"],
        end_excluding=row["end_excluding"],
        vulnerable=bool(row["vulnerable"]),
    )


class VulnerabilityStore:
    """Factory for StoreSessions over one SQLite database.

    ``":memory:"`` maps to a private shared-cache in-memory database that
    lives as long as the store.
    """

    def __init__(self, db_path: str = ":memory:", busy_timeout: float = 30.0):
        self.db_path = db_path
        self.busy_timeout = busy_timeout
        self._write_lock = threading.Lock()
        if db_path == ":memory:":
            self._uri = f"file:vulnsync-{uuid.uuid4().hex}?mode=memory&cache=shared"
            self._memory = True
        else:
            self._uri = db_path
            self._memory = False
        # Keeps in-memory databases alive and creates the schema.
        self._conn = self._connect()
        if not self._memory:
            self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.executescript(_SCHEMA)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(
            self._uri,
            uri=self._memory,
            timeout=self.busy_timeout,
            isolation_level=None,
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        if self._memory:
            conn.execute("PRAGMA read_uncommitted = 1")
        return conn

    def open_session(self) -> StoreSession:
        return StoreSession(self._connect(), self._write_lock)

    @contextmanager
    def session(self) -> Iterator[StoreSession]:
        """Open a session for one unit of work and always close it."""
        session = self.open_session()
        try:
            yield session
        finally:
            session.close()

    def close(self) -> None:
        """Close the store's own connection."""
        self._conn.close()


class StoreSession:
    """A single-connection view of the store. Not shared between workers."""

    def __init__(self, conn: sqlite3.Connection, write_lock: threading.Lock):
        self._conn = conn
        self._write_lock = write_lock
        self._in_transaction = False

    @contextmanager
    def transaction(self) -> Iterator[StoreSession]:
        """Run the block as one write transaction; roll back on any error."""
        if self._in_transaction:
            yield self
            return
        with self._write_lock:
            self._execute("BEGIN IMMEDIATE")
            self._in_transaction = True
            try:
                yield self
                self._execute("COMMIT")
            except BaseException:
                self._rollback()
                raise
            finally:
                self._in_transaction = False

    def _rollback(self) -> None:
        if not self._conn.in_transaction:
            return
        try:
            self._conn.execute("ROLLBACK")
        except sqlite3.Error as exc:
            logger.error("Rollback failed: %s", exc)

    def _execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        try:
            return self._conn.execute(sql, params)
        except sqlite3.Error as exc:
            raise StoreError(f"Store query failed: {exc}") from exc

    # --- Vulnerable software ---

    def find_software(self, software: VulnerableSoftware) -> VulnerableSoftware | None:
        """Look up a stored record with the same identity tuple."""
        row = self._execute(
            f"SELECT {_SOFTWARE_COLUMNS} FROM vulnerable_software WHERE {_IDENTITY_WHERE}",
            software.identity,
        ).fetchone()
        return _row_to_software(row) if row else None

    def upsert_software(self, software: VulnerableSoftware) -> VulnerableSoftware:
        """Persist a software record unless one with the same identity exists."""
        with self.transaction():
            self._execute(
                """INSERT OR IGNORE INTO vulnerable_software
                   (purl_type, purl_namespace, purl_name, version, start_including,
                    start_excluding, end_including, end_excluding, vulnerable)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    software.purl_type, software.purl_namespace, software.purl_name,
                    software.version, software.start_including, software.start_excluding,
                    software.end_including, software.end_excluding, int(software.vulnerable),
                ),
            )
            stored = self.find_software(software)
        if stored is None:
            raise StoreError(f"Vulnerable software {software.identity} was not persisted")
        return stored

    def count_software(self) -> int:
        return self._execute("SELECT COUNT(*) FROM vulnerable_software").fetchone()[0]

    # --- Vulnerabilities ---

    def upsert_vulnerability(self, vulnerability: Vulnerability) -> int:
        """Insert or overwrite a vulnerability by (source, vuln_id); returns its row id."""
        if not vulnerability.vuln_id:
            raise StoreError("Cannot store a vulnerability without a vuln_id")
        with self.transaction():
            self._execute(
                """INSERT INTO vulnerability
                   (source, vuln_id, title, description, references_md, created, published,
                    updated, severity, cvss_v3_base_score, cvss_v3_vector)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                   ON CONFLICT (source, vuln_id) DO UPDATE SET
                       title = excluded.title,
                       description = excluded.description,
                       references_md = excluded.references_md,
                       created = excluded.created,
                       published = excluded.published,
                       updated = excluded.updated,
                       severity = excluded.severity,
                       cvss_v3_base_score = excluded.cvss_v3_base_score,
                       cvss_v3_vector = excluded.cvss_v3_vector""",
                (
                    vulnerability.source,
                    vulnerability.vuln_id,
                    vulnerability.title,
                    vulnerability.description,
                    vulnerability.references,
                    _dt_to_text(vulnerability.created),
                    _dt_to_text(vulnerability.published),
                    _dt_to_text(vulnerability.updated),
                    vulnerability.severity.value,
                    vulnerability.cvss_v3_base_score,
                    vulnerability.cvss_v3_vector,
                ),
            )
            row = self._execute(
                "SELECT id FROM vulnerability WHERE source = ? AND vuln_id = ?",
                (vulnerability.source, vulnerability.vuln_id),
            ).fetchone()
        return row["id"]

    def replace_software(self, vulnerability_pk: int, software_ids: list[int]) -> None:
        """Replace the full software association list of a vulnerability."""
        with self.transaction():
            self._execute(
                "DELETE FROM vulnerability_software WHERE vulnerability_id = ?",
                (vulnerability_pk,),
            )
            for position, software_id in enumerate(software_ids):
                self._execute(
                    """INSERT OR IGNORE INTO vulnerability_software
                       (vulnerability_id, software_id, position) VALUES (?, ?, ?)""",
                    (vulnerability_pk, software_id, position),
                )

    def replace_cwes(self, vulnerability_pk: int, cwes: list[Cwe]) -> None:
        with self.transaction():
            self._execute(
                "DELETE FROM vulnerability_cwe WHERE vulnerability_id = ?",
                (vulnerability_pk,),
            )
            for cwe in cwes:
                self._execute(
                    """INSERT OR IGNORE INTO vulnerability_cwe (vulnerability_id, cwe_id, name)
                       VALUES (?, ?, ?)""",
                    (vulnerability_pk, cwe.cwe_id, cwe.name),
                )

    def get_vulnerability(self, source: str, vuln_id: str) -> Vulnerability | None:
        """Read a vulnerability with its CWEs and ordered software list."""
        row = self._execute(
            "SELECT * FROM vulnerability WHERE source = ? AND vuln_id = ?",
            (source, vuln_id),
        ).fetchone()
        if row is None:
            return None
        return self._load_vulnerability(row)

    def _load_vulnerability(self, row: sqlite3.Row) -> Vulnerability:
        cwes = [
            Cwe(cwe_id=r["cwe_id"], name=r["name"])
            for r in self._execute(
                "SELECT cwe_id, name FROM vulnerability_cwe WHERE vulnerability_id = ? ORDER BY cwe_id",
                (row["id"],),
            ).fetchall()
        ]
        software = [
            _row_to_software(r)
            for r in self._execute(
                f"""SELECT {", ".join("s." + field for field in _SOFTWARE_FIELDS)}
                    FROM vulnerable_software s
                    JOIN vulnerability_software vs ON vs.software_id = s.id
                    WHERE vs.vulnerability_id = ?
                    ORDER BY vs.position""",
                (row["id"],),
            ).fetchall()
        ]
        return Vulnerability(
            id=row["id"],
            source=row["source"],
            vuln_id=row["vuln_id"],
            title=row["title"],
            description=row["description"],
            references=row["references_md"],
            created=_text_to_dt(row["created"]),
            published=_text_to_dt(row["published"]),
            updated=_text_to_dt(row["updated"]),
            severity=Severity(row["severity"]),
            cvss_v3_base_score=row["cvss_v3_base_score"],
            cvss_v3_vector=row["cvss_v3_vector"],
            cwes=cwes,
            vulnerable_software=software,
        )

    def count_vulnerabilities(self) -> int:
        return self._execute("SELECT COUNT(*) FROM vulnerability").fetchone()[0]

    # --- Component findings ---

    def add_vulnerability(self, vulnerability_pk: int, component_uuid: str, analyzer: str) -> bool:
        """Attribute a vulnerability to a component. Returns False if already attributed."""
        with self.transaction():
            cursor = self._execute(
                """INSERT OR IGNORE INTO component_vulnerability
                   (component_uuid, vulnerability_id, analyzer, attributed_on)
                   VALUES (?, ?, ?, ?)""",
                (component_uuid, vulnerability_pk, analyzer, datetime.now(timezone.utc).isoformat()),
            )
        return cursor.rowcount > 0

    def get_component_vulnerabilities(self, component_uuid: str) -> list[Vulnerability]:
        rows = self._execute(
            """SELECT v.* FROM vulnerability v
               JOIN component_vulnerability cv ON cv.vulnerability_id = v.id
               WHERE cv.component_uuid = ?
               ORDER BY v.source, v.vuln_id""",
            (component_uuid,),
        ).fetchall()
        return [self._load_vulnerability(row) for row in rows]

    def close(self) -> None:
        self._conn.close()
