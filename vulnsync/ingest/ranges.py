"""Version-range expression parsing.

A range expression is one or more comma-separated clauses such as
``>=1.2.0``, ``[1.0,2.0)``, ``=1.5`` or ``< 3.0.0``. Each clause sets one
bound; the clauses of an expression are folded into a single VersionBounds.
"""

from __future__ import annotations

import logging

from vulnsync.models import VersionBounds, VulnerableSoftware
from vulnsync.purl import parse_purl

logger = logging.getLogger(__name__)


def _strip(clause: str, *tokens: str) -> str:
    for token in tokens:
        clause = clause.replace(token, "")
    return clause.strip()


def _match(clause: str) -> dict[str, str]:
    if clause.startswith(">=") or clause.startswith("["):
        return {"start_including": _strip(clause, ">=", "[")}
    if clause.startswith(">") or clause.startswith("("):
        return {"start_excluding": _strip(clause, ">", "(")}
    if clause.startswith("<=") or clause.endswith("]"):
        return {"end_including": _strip(clause, "<=", "]")}
    if clause.startswith("<") or clause.endswith(")"):
        return {"end_excluding": _strip(clause, "<", ")")}
    if clause.startswith("="):
        version = _strip(clause, "=")
        return {"start_including": version, "end_including": version}
    return {}


def parse_clause(clause: str) -> dict[str, str]:
    """Parse a single clause into the bound field(s) it sets.

    Returns an empty dict when the clause matches no known operator or
    names no version.
    """
    clause = clause.strip()
    fields = _match(clause)
    if not fields or not all(fields.values()):
        logger.warning("Unable to determine version range %r", clause)
        return {}
    return fields


def parse_range(expression: str) -> VersionBounds:
    """Parse a (possibly composite) range expression into VersionBounds.

    Clauses are applied left to right; a later clause overwrites a bound
    already set by an earlier one.
    """
    fields: dict[str, str] = {}
    for clause in expression.split(","):
        if not clause.strip():
            continue
        for name, value in parse_clause(clause).items():
            if name in fields and fields[name] != value:
                logger.debug(
                    "Range %r sets %s twice (%r, then %r); keeping the later value",
                    expression, name, fields[name], value,
                )
            fields[name] = value
    return VersionBounds(**fields)


def parse_ranges(purl: str | None, expressions: list) -> list[VulnerableSoftware] | None:
    """Build in-memory VulnerableSoftware records for a package's range expressions.

    Returns None when the purl is missing or malformed; the caller then
    keeps the vulnerability with an empty software list. Expressions that
    yield no bound at all are skipped.
    """
    if not purl:
        logger.debug("No purl provided - skipping %d range(s)", len(expressions))
        return None

    coordinate = parse_purl(purl)
    if coordinate is None:
        logger.debug("Invalid purl %r - skipping %d range(s)", purl, len(expressions))
        return None

    software: list[VulnerableSoftware] = []
    for expression in expressions:
        if not isinstance(expression, str):
            logger.warning("Ignoring non-string range %r for %s", expression, purl)
            continue
        bounds = parse_range(expression)
        if bounds.is_empty:
            logger.warning("No usable bounds in range %r for %s", expression, purl)
            continue
        software.append(VulnerableSoftware.from_bounds(coordinate, bounds))
    return software
