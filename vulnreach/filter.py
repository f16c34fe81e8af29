"""Per-module vulnerability index: platform/version filtering and lookups.

The predicates here are pure; fetching lives in ``fetch_vulnerabilities``
and the database client.
"""

from __future__ import annotations

from dataclasses import dataclass, field

import structlog

from vulnreach.osv.client import VulnDBClient, gather_all
from vulnreach.osv.models import Entry
from vulnreach.program import Module, Package

log = structlog.get_logger("vulnreach.filter")


@dataclass
class ModVulns:
    """Vulnerabilities grouped per module."""

    module: Module
    vulns: list[Entry] = field(default_factory=list)


def _has_path_prefix(import_path: str, module_path: str) -> bool:
    return import_path == module_path or import_path.startswith(module_path + "/")


class ModuleVulnerabilities:
    """Vulnerability entries indexed by the module they were fetched for."""

    def __init__(self, mod_vulns: list[ModVulns] | None = None) -> None:
        self.mods: list[ModVulns] = list(mod_vulns or [])

    def __iter__(self):
        return iter(self.mods)

    def __len__(self) -> int:
        return len(self.mods)

    def filter(self, goos: str, goarch: str) -> ModuleVulnerabilities:
        """Keep only affected ranges matching the module version and platform.

        A module without a resolved version is never affected: unknown
        versions would otherwise flood reports with false alarms.
        """
        filtered: list[ModVulns] = []
        for mv in self.mods:
            version = mv.module.resolved.version
            vulns: list[Entry] = []
            for v in mv.vulns:
                affected = [
                    a
                    for a in v.affected
                    if version != ""
                    and a.affects_semver(version)
                    and a.ecosystem_specific.matches_platform(goos, goarch)
                ]
                if not affected:
                    continue
                vulns.append(v.model_copy(update={"affected": affected}))
            if version == "" and mv.vulns:
                log.debug("filter.unknown_version", module=mv.module.path, entries=len(mv.vulns))
            filtered.append(ModVulns(module=mv.module, vulns=vulns))
        return ModuleVulnerabilities(filtered)

    def _most_specific(self, import_path: str) -> ModVulns | None:
        best: ModVulns | None = None
        for mv in self.mods:
            if _has_path_prefix(import_path, mv.module.path):
                if best is None or len(best.module.path) < len(mv.module.path):
                    best = mv
        return best

    def module_for_package(self, import_path: str) -> Module | None:
        """The most specific known module containing *import_path*."""
        mv = self._most_specific(import_path)
        return mv.module if mv else None

    def db_package_path(self, import_path: str) -> str:
        """*import_path* in the namespace the database uses for it."""
        mv = self._most_specific(import_path)
        return self._rewrite(mv, import_path) if mv else import_path

    def vulns_for_package(self, import_path: str) -> list[Entry]:
        """Vulnerabilities of the package at *import_path*.

        The owning module is the one with the longest path prefixing
        *import_path*. Under a ``replace`` the lookup happens in the
        replacement module's namespace.
        """
        mv = self._most_specific(import_path)
        if mv is None:
            return []
        path = self._rewrite(mv, import_path)
        return [v for v in mv.vulns if any(a.package.name == path for a in v.affected)]

    def vulns_for_symbol(self, import_path: str, symbol: str) -> list[Entry]:
        """Vulnerabilities of *symbol* in *import_path*.

        An affected package listing no symbols has every symbol vulnerable.
        """
        mv = self._most_specific(import_path)
        if mv is None:
            return []
        path = self._rewrite(mv, import_path)
        out: list[Entry] = []
        for v in mv.vulns:
            for a in v.affected:
                if a.package.name != path:
                    continue
                symbols = a.ecosystem_specific.symbols
                if not symbols or symbol in symbols:
                    out.append(v)
                    break
        return out

    @staticmethod
    def _rewrite(mv: ModVulns, import_path: str) -> str:
        replace = mv.module.replace
        if replace is None:
            return import_path
        return replace.path + import_path[len(mv.module.path) :]

    def vulns(self) -> list[Entry]:
        """Distinct entries across all modules, first occurrence wins."""
        out: list[Entry] = []
        seen: set[str] = set()
        for mv in self.mods:
            for v in mv.vulns:
                if v.id not in seen:
                    seen.add(v.id)
                    out.append(v)
        return out

    def num(self) -> int:
        return sum(len(mv.vulns) for mv in self.mods)


def extract_modules(packages: list[Package]) -> list[Module]:
    """Modules of *packages* and everything they import, unique by path@version.

    A replaced module is keyed by its replacement.
    """
    modules: dict[str, Module] = {}
    seen: set[Package] = set()
    stack = list(reversed(packages))
    while stack:
        pkg = stack.pop()
        if pkg in seen:
            continue
        seen.add(pkg)
        if pkg.module is not None:
            modules[pkg.module.resolved.key] = pkg.module
        stack.extend(reversed(pkg.imports))
    return list(modules.values())


async def fetch_vulnerabilities(
    client: VulnDBClient, modules: list[Module]
) -> ModuleVulnerabilities:
    """Query *client* for every module; any client error aborts the fetch."""
    results = await gather_all(client.get_by_module(m.resolved.path) for m in modules)
    mods = [
        ModVulns(module=m, vulns=list(entries))
        for m, entries in zip(modules, results)
        if entries
    ]
    log.debug("filter.fetched", modules=len(modules), with_vulns=len(mods))
    return ModuleVulnerabilities(mods)
