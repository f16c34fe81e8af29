"""Go-flavoured semantic version handling for OSV range checks.

Vulnerability databases record versions bare (``1.2.3``), while Go module
versions carry a ``v`` prefix and Go toolchain releases a ``go`` prefix.
Everything is canonicalised to a ``semver.Version`` before comparison.
Invalid input yields ``None`` so callers can fail closed.
"""

from __future__ import annotations

from functools import lru_cache

import semver


def canonicalize_prefix(version: str) -> str:
    """Strip a ``v`` or ``go`` prefix and add a single ``v`` back."""
    if version.startswith("go"):
        version = version[2:]
    elif version.startswith("v"):
        version = version[1:]
    return "v" + version


@lru_cache(maxsize=4096)
def parse(version: str) -> semver.Version | None:
    """Parse *version* (any supported prefix), or ``None`` if malformed.

    ``v1`` and ``v1.2`` shorthands are accepted. Build metadata is dropped,
    it never takes part in precedence.
    """
    if not version:
        return None
    raw = canonicalize_prefix(version)[1:]
    raw = raw.split("+", 1)[0]
    try:
        return semver.Version.parse(raw, optional_minor_and_patch=True)
    except (ValueError, TypeError):
        return None


def is_valid(version: str) -> bool:
    return parse(version) is not None


def compare(v1: str, v2: str) -> int | None:
    """Return -1, 0 or 1, or ``None`` when either side is malformed."""
    p1, p2 = parse(v1), parse(v2)
    if p1 is None or p2 is None:
        return None
    return p1.compare(p2)
