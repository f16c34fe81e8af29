"""Binary-mode analysis.

Only the module list and symbol table of a compiled executable are known,
so no imports, requires or call graph is computed and every ``Vuln`` has
all sinks at 0.
"""

from __future__ import annotations

import structlog

from vulnreach.config import Config
from vulnreach.filter import ModuleVulnerabilities, fetch_vulnerabilities
from vulnreach.models.result import Result, Vuln
from vulnreach.program import Module

log = structlog.get_logger("vulnreach.binary")


async def binary(
    modules: list[Module],
    package_symbols: dict[str, list[str]],
    config: Config,
) -> Result:
    """Detect vulnerable symbols of an executable.

    Args:
        modules: Dependency modules from the build info.
        package_symbols: Package import path -> symbols linked into the binary.
        config: Analysis configuration; ``imports_only`` reports every
            vulnerable symbol of a linked vulnerable package instead.
    """
    mod_vulns = await fetch_vulnerabilities(config.client, modules)
    log.info("binary.fetched", modules=len(modules), entries=mod_vulns.num())
    mod_vulns = mod_vulns.filter(config.goos, config.goarch)

    result = Result()
    for pkg in sorted(package_symbols):
        symbols = package_symbols[pkg]
        if config.imports_only:
            add_imports_only_vulns(pkg, symbols, result, mod_vulns)
        else:
            add_symbol_vulns(pkg, symbols, result, mod_vulns)
    log.info("binary.done", packages=len(package_symbols), vulns=len(result.vulns))
    return result


def _mod_path(mod_vulns: ModuleVulnerabilities, pkg: str) -> str:
    mod = mod_vulns.module_for_package(pkg)
    return mod.path if mod else ""


def add_imports_only_vulns(
    pkg: str, symbols: list[str], result: Result, mod_vulns: ModuleVulnerabilities
) -> None:
    """Add a ``Vuln`` for each vulnerable symbol of *pkg*.

    Entries covering every symbol of the package expand to the package
    symbols present in the binary, since its code is unavailable.
    """
    db_path = mod_vulns.db_package_path(pkg)
    mod_path = _mod_path(mod_vulns, pkg)
    for osv in mod_vulns.vulns_for_package(pkg):
        for affected in osv.affected:
            if affected.package.name != db_path:
                continue
            for symbol in affected.ecosystem_specific.symbols or symbols:
                result.add_vuln(Vuln(osv=osv, symbol=symbol, pkg_path=pkg, mod_path=mod_path))


def add_symbol_vulns(
    pkg: str, symbols: list[str], result: Result, mod_vulns: ModuleVulnerabilities
) -> None:
    """Add a ``Vuln`` for every symbol of *pkg* in the binary that is vulnerable."""
    db_path = mod_vulns.db_package_path(pkg)
    mod_path = _mod_path(mod_vulns, pkg)
    for symbol in symbols:
        for osv in mod_vulns.vulns_for_symbol(pkg, symbol):
            if any(a.package.name == db_path for a in osv.affected):
                result.add_vuln(Vuln(osv=osv, symbol=symbol, pkg_path=pkg, mod_path=mod_path))
