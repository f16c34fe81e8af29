"""Tests for the per-module vulnerability index (filtering and lookups)."""

from __future__ import annotations

import asyncio

import pytest

from vulnreach.exceptions import VulnDBError
from vulnreach.filter import ModuleVulnerabilities, ModVulns, extract_modules, fetch_vulnerabilities
from vulnreach.osv.client import VulnDBClient
from vulnreach.osv.models import TYPE_SEMVER, Affected, EcosystemSpecific, Entry, Package, Range, RangeEvent
from vulnreach.program import Module
from vulnreach.program import Package as GoPackage
from vulnreach.testing import FakeVulnDBClient


def _entry(
    id_: str,
    pkg: str,
    *,
    events: list[RangeEvent] | None = None,
    symbols: list[str] | None = None,
    goos: list[str] | None = None,
    goarch: list[str] | None = None,
) -> Entry:
    return Entry(
        id=id_,
        affected=[
            Affected(
                package=Package(name=pkg),
                ranges=[Range(type=TYPE_SEMVER, events=events or [])],
                ecosystem_specific=EcosystemSpecific(
                    symbols=symbols or [], goos=goos or [], goarch=goarch or []
                ),
            )
        ],
    )


def _ids(entries: list[Entry]) -> list[str]:
    return [e.id for e in entries]


# ── filter ──


class TestFilter:
    @pytest.mark.parametrize(
        "version,goos,goarch,expected",
        [
            ("v1.0.2", "linux", "amd64", True),
            ("v1.0.4", "linux", "amd64", False),  # fixed
            ("v1.1.2", "linux", "amd64", True),  # reintroduced
            ("v1.0.2", "windows", "amd64", False),  # OS constraint
            ("v1.0.2", "linux", "arm64", False),  # arch constraint
            ("", "linux", "amd64", False),  # unknown version
            ("not-semver", "linux", "amd64", False),
        ],
    )
    def test_affected_iff_version_and_platform_match(self, version, goos, goarch, expected):
        constrained = _entry(
            "VC",
            "golang.org/amod/avuln",
            events=[RangeEvent(introduced="1.0.0"), RangeEvent(fixed="1.0.4"), RangeEvent(introduced="1.1.2")],
            goos=["linux", "darwin"],
            goarch=["amd64"],
        )
        mv = ModuleVulnerabilities(
            [ModVulns(module=Module("golang.org/amod", version), vulns=[constrained])]
        ).filter(goos, goarch)
        got = mv.vulns_for_package("golang.org/amod/avuln")
        assert (_ids(got) == ["VC"]) is expected

    def test_replace_version_is_used(self, va):
        mod = Module("golang.org/amod", "v1.0.5", replace=Module("golang.org/amod", "v1.0.2"))
        mv = ModuleVulnerabilities([ModVulns(module=mod, vulns=[va])]).filter("linux", "amd64")
        assert _ids(mv.vulns_for_package("golang.org/amod/avuln")) == ["VA"]

    def test_modules_kept_when_empty(self, va):
        mv = ModuleVulnerabilities(
            [ModVulns(module=Module("golang.org/amod", "v1.0.4"), vulns=[va])]
        ).filter("linux", "amd64")
        assert len(mv) == 1
        assert mv.num() == 0

    def test_unaffected_ranges_are_dropped(self):
        entry = Entry(
            id="VX",
            affected=[
                Affected(
                    package=Package(name="golang.org/amod/a"),
                    ranges=[Range(type=TYPE_SEMVER, events=[RangeEvent(introduced="2.0.0")])],
                ),
                Affected(package=Package(name="golang.org/amod/b"), ranges=[Range(type=TYPE_SEMVER)]),
            ],
        )
        mv = ModuleVulnerabilities(
            [ModVulns(module=Module("golang.org/amod", "v1.0.0"), vulns=[entry])]
        ).filter("linux", "amd64")
        (filtered,) = mv.vulns()
        assert [a.package.name for a in filtered.affected] == ["golang.org/amod/b"]
        assert mv.vulns_for_package("golang.org/amod/a") == []
        # The source entry is left untouched.
        assert len(entry.affected) == 2


# ── queries ──


class TestQueries:
    def test_longest_module_prefix_wins(self):
        outer = _entry("OUTER", "golang.org/x/net/http2")
        inner = _entry("INNER", "golang.org/x/net/http2")
        mv = ModuleVulnerabilities(
            [
                ModVulns(module=Module("golang.org/x/net", "v1.0.0"), vulns=[outer]),
                ModVulns(module=Module("golang.org/x/net/http2", "v1.0.0"), vulns=[inner]),
            ]
        )
        assert _ids(mv.vulns_for_package("golang.org/x/net/http2")) == ["INNER"]
        assert mv.module_for_package("golang.org/x/net/http2").path == "golang.org/x/net/http2"

    def test_prefix_is_path_segment_aware(self):
        mv = ModuleVulnerabilities(
            [ModVulns(module=Module("golang.org/amod", "v1.0.0"), vulns=[_entry("V", "golang.org/amodx/p")])]
        )
        assert mv.vulns_for_package("golang.org/amodx/p") == []
        assert mv.module_for_package("golang.org/amodx/p") is None

    def test_replace_rewrites_import_path(self):
        entry = _entry("VR", "golang.org/fork/avuln")
        mod = Module("golang.org/amod", "v1.0.0", replace=Module("golang.org/fork", "v1.0.0"))
        mv = ModuleVulnerabilities([ModVulns(module=mod, vulns=[entry])])
        assert _ids(mv.vulns_for_package("golang.org/amod/avuln")) == ["VR"]
        assert mv.db_package_path("golang.org/amod/avuln") == "golang.org/fork/avuln"

    def test_vulns_for_symbol(self, va):
        mv = ModuleVulnerabilities([ModVulns(module=Module("golang.org/amod", "v1.1.3"), vulns=[va])])
        assert _ids(mv.vulns_for_symbol("golang.org/amod/avuln", "VulnData.Vuln1")) == ["VA"]
        assert mv.vulns_for_symbol("golang.org/amod/avuln", "VulnData.Safe") == []

    def test_empty_symbol_list_means_every_symbol(self):
        mv = ModuleVulnerabilities(
            [ModVulns(module=Module("golang.org/amod", "v1.0.0"), vulns=[_entry("ALL", "golang.org/amod/p")])]
        )
        assert _ids(mv.vulns_for_symbol("golang.org/amod/p", "Anything")) == ["ALL"]

    def test_vulns_deduplicates_by_id(self, va):
        mv = ModuleVulnerabilities(
            [
                ModVulns(module=Module("golang.org/amod", "v1.1.3"), vulns=[va]),
                ModVulns(module=Module("golang.org/amod/sub", "v1.1.3"), vulns=[va]),
            ]
        )
        assert _ids(mv.vulns()) == ["VA"]
        assert mv.num() == 2


# ── extract / fetch ──


class TestFetch:
    def test_extract_modules_unique_and_replaced(self):
        amod = Module("golang.org/amod", "v1.0.0", replace=Module("golang.org/fork", "v1.1.0"))
        bmod = Module("golang.org/bmod", "v0.5.0")
        b1 = GoPackage(name="b1", path="golang.org/bmod/b1", module=bmod)
        b2 = GoPackage(name="b2", path="golang.org/bmod/b2", module=bmod)
        a = GoPackage(name="a", path="golang.org/amod/a", module=amod, imports=[b1, b2])
        root = GoPackage(name="main", path="example.com/cmd", imports=[a, b1])
        a.imports.append(root)  # cycle

        modules = extract_modules([root])
        assert modules == [amod, bmod]

    @pytest.mark.asyncio
    async def test_fetch_queries_replacement_path(self, va):
        client = FakeVulnDBClient({"golang.org/fork": [va]})
        amod = Module("golang.org/amod", "v1.0.0", replace=Module("golang.org/fork", "v1.0.2"))
        bmod = Module("golang.org/bmod", "v0.5.0")

        mv = await fetch_vulnerabilities(client, [amod, bmod])

        assert sorted(client.calls) == ["golang.org/bmod", "golang.org/fork"]
        assert [m.module for m in mv] == [amod]

    @pytest.mark.asyncio
    async def test_fetch_errors_propagate(self):
        client = FakeVulnDBClient(error=VulnDBError("fake", "boom"))
        with pytest.raises(VulnDBError, match="boom"):
            await fetch_vulnerabilities(client, [Module("golang.org/amod", "v1.0.0")])

    @pytest.mark.asyncio
    async def test_failure_cancels_pending_lookups(self):
        class SlowAndFailing(VulnDBClient):
            def __init__(self):
                self.cancelled: list[str] = []

            async def get_by_module(self, module_path: str) -> list[Entry]:
                if module_path == "golang.org/bad":
                    raise VulnDBError("fake", "boom")
                try:
                    await asyncio.Event().wait()
                except asyncio.CancelledError:
                    self.cancelled.append(module_path)
                    raise
                return []

        client = SlowAndFailing()
        modules = [Module("golang.org/slow", "v1.0.0"), Module("golang.org/bad", "v1.0.0")]

        with pytest.raises(VulnDBError, match="boom"):
            await fetch_vulnerabilities(client, modules)
        assert client.cancelled == ["golang.org/slow"]
