"""OSV (Open Source Vulnerability) entry schema as served by Go vulnerability databases.

Only the fields the reachability analysis and reporting need are modelled;
unknown fields are ignored.
"""

from __future__ import annotations

from datetime import datetime
from functools import cmp_to_key

from pydantic import BaseModel, ConfigDict, Field

from vulnreach.osv import semver

TYPE_SEMVER = "SEMVER"
TYPE_GIT = "GIT"

# Event value marking "since the beginning of time".
INTRODUCED_ZERO = "0"


class _OSVModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class RangeEvent(_OSVModel):
    introduced: str = ""
    fixed: str = ""


class Range(_OSVModel):
    type: str
    events: list[RangeEvent] = Field(default_factory=list)

    def contains_semver(self, version: str) -> bool:
        """Check whether *version* falls inside this range.

        Non-SEMVER ranges and malformed versions (the module's or any
        event's) never match.
        """
        if self.type != TYPE_SEMVER:
            return False
        if not self.events:
            return True
        if not semver.is_valid(version):
            return False
        for e in self.events:
            for v in (e.introduced, e.fixed):
                if v and v != INTRODUCED_ZERO and not semver.is_valid(v):
                    return False

        affected = False
        for e in sorted(self.events, key=cmp_to_key(_event_cmp)):
            if e.introduced:
                if not affected:
                    affected = (
                        e.introduced == INTRODUCED_ZERO
                        or semver.compare(version, e.introduced) >= 0
                    )
            elif e.fixed and affected:
                affected = semver.compare(version, e.fixed) < 0
        return affected


def _event_version(e: RangeEvent) -> str:
    return e.introduced or e.fixed


def _event_cmp(a: RangeEvent, b: RangeEvent) -> int:
    if a.introduced == INTRODUCED_ZERO:
        return -1 if b.introduced != INTRODUCED_ZERO else 0
    if b.introduced == INTRODUCED_ZERO:
        return 1
    return semver.compare(_event_version(a), _event_version(b)) or 0


class Package(_OSVModel):
    name: str
    ecosystem: str = "Go"


class EcosystemSpecific(_OSVModel):
    symbols: list[str] = Field(default_factory=list)
    goos: list[str] = Field(default_factory=list, alias="GOOS")
    goarch: list[str] = Field(default_factory=list, alias="GOARCH")
    url: str = ""

    def matches_platform(self, goos: str, goarch: str) -> bool:
        """Empty constraint lists are wildcards."""
        matches_os = not self.goos or goos in self.goos
        matches_arch = not self.goarch or goarch in self.goarch
        return matches_os and matches_arch


class Affected(_OSVModel):
    package: Package
    ranges: list[Range] = Field(default_factory=list)
    ecosystem_specific: EcosystemSpecific = Field(default_factory=EcosystemSpecific)

    def affects_semver(self, version: str) -> bool:
        """True iff some SEMVER range contains *version*.

        No ranges at all, or no SEMVER-typed range, means no match.
        """
        return any(r.contains_semver(version) for r in self.ranges)


class Reference(_OSVModel):
    type: str
    url: str


class Entry(_OSVModel):
    id: str
    published: datetime | None = None
    modified: datetime | None = None
    withdrawn: datetime | None = None
    aliases: list[str] = Field(default_factory=list)
    details: str = ""
    affected: list[Affected] = Field(default_factory=list)
    references: list[Reference] = Field(default_factory=list)
