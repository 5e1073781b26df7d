"""Package URL (purl) helpers: parsing, capability checks and API path encoding."""

from __future__ import annotations

import logging
from urllib.parse import quote

from packageurl import PackageURL

logger = logging.getLogger(__name__)


def parse_purl(purl: str | None) -> PackageURL | None:
    """Parse a purl string, returning None when it is missing or malformed."""
    if not purl:
        return None
    try:
        return PackageURL.from_string(purl.strip())
    except ValueError as exc:
        logger.debug("Invalid purl %r: %s", purl, exc)
        return None


def is_fully_qualified(purl: str | None) -> bool:
    """True when the purl carries a scheme, type, name and version."""
    coordinate = parse_purl(purl)
    if coordinate is None:
        return False
    # from_string rejects anything without the pkg: scheme
    return bool(coordinate.type and coordinate.name and coordinate.version)


def encode_purl_path(coordinate: PackageURL) -> str:
    """Percent-encode a purl into a single URL path segment.

    Qualifiers and subpath are dropped; the API keys packages on
    type, namespace, name and version only. The decoded parts are joined
    and encoded once, so a scoped namespace like ``@babel`` becomes ``%40babel``.
    """
    parts = [p for p in (coordinate.namespace, coordinate.name) if p]
    purl = f"pkg:{coordinate.type}/{'/'.join(parts)}"
    if coordinate.version:
        purl += f"@{coordinate.version}"
    return quote(purl, safe="")
