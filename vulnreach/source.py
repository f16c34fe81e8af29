"""Source-mode analysis.

Computes three slices of the loaded program:

- the imports graph leading to an import of a package with known
  vulnerabilities,
- the requires graph leading to a module with such a package,
- the call graph leading to a use of a known vulnerable function or method.
"""

from __future__ import annotations

import structlog

from vulnreach.callgraph import build_call_graph
from vulnreach.config import Config
from vulnreach.filter import ModuleVulnerabilities, extract_modules, fetch_vulnerabilities
from vulnreach.models.result import CallSite, FuncNode, ModNode, PkgNode, Result, Vuln
from vulnreach.osv.models import Entry
from vulnreach.program import (
    CallInstruction,
    Function,
    Module,
    Package,
    Program,
    ProgramCallGraph,
    entry_points,
)
from vulnreach.slicing import prune_slice

log = structlog.get_logger("vulnreach.source")


async def source(
    packages: list[Package],
    config: Config,
    program: Program | None = None,
) -> Result:
    """Detect vulnerabilities in *packages* and slice the graphs leading to them.

    The call graph slice is computed only when *program* is given and
    ``config.imports_only`` is off.
    """
    modules = extract_modules(packages)
    mod_vulns = await fetch_vulnerabilities(config.client, modules)
    log.info("source.fetched", modules=len(modules), entries=mod_vulns.num())
    mod_vulns = mod_vulns.filter(config.goos, config.goarch)

    result = Result()
    vuln_pkg_mod_slice(packages, mod_vulns, result)
    log.info(
        "source.imports_done",
        packages=len(result.imports),
        modules=len(result.requires),
        vulns=len(result.vulns),
    )

    if config.imports_only or program is None:
        return result

    entries = entry_points(program.packages)
    cg = build_call_graph(program, entries, config.refiner)
    vuln_call_graph_slice(entries, mod_vulns, cg, result)
    log.info(
        "source.calls_done",
        entries=len(entries),
        functions=len(result.calls),
        reachable=sum(1 for v in result.vulns if v.call_sink),
    )
    return result


# ── Imports / requires ─────────────────────────────────────────────────────


def vuln_pkg_mod_slice(
    packages: list[Package], mod_vulns: ModuleVulnerabilities, result: Result
) -> None:
    """Populate ``result.imports`` and ``result.requires`` from *packages*."""
    node_pkgs = vuln_import_slice(packages, mod_vulns, result)
    vuln_module_slice(result, node_pkgs)


def vuln_import_slice(
    packages: list[Package], mod_vulns: ModuleVulnerabilities, result: Result
) -> dict[int, Package]:
    """Slice the import graph down to packages leading to vulnerable imports.

    Returns the package behind each created node, keyed by node id.
    """
    node_pkgs: dict[int, Package] = {}

    def make_node(pkg: Package) -> PkgNode:
        node = result.imports.add(PkgNode(name=pkg.name, path=pkg.path))
        node_pkgs[node.id] = pkg
        return node

    def link(parent: PkgNode, _label: None, child: PkgNode) -> None:
        child.imported_by.append(parent.id)

    def finish(pkg: Package, node: PkgNode, vulns: list[Entry]) -> None:
        db_path = mod_vulns.db_package_path(pkg.path)
        for osv in vulns:
            for affected in osv.affected:
                if affected.package.name != db_path:
                    continue
                symbols = affected.ecosystem_specific.symbols or pkg.symbols()
                for symbol in symbols:
                    vuln = result.add_vuln(Vuln(osv=osv, symbol=symbol, pkg_path=pkg.path))
                    vuln.set_sink("import", node.id)

    entries = prune_slice(
        packages,
        edges=lambda pkg: ((None, imp) for imp in pkg.imports),
        classify=lambda pkg: mod_vulns.vulns_for_package(pkg.path),
        make_node=make_node,
        link=link,
        finish=finish,
    )
    result.imports.entries.extend(n.id for n in entries)
    return node_pkgs


def vuln_module_slice(result: Result, node_pkgs: dict[int, Package]) -> None:
    """Populate ``result.requires`` as a module-level overlay of the import slice.

    A module requires another when one of its packages imports a package of
    the other; edges within a single module are dropped.
    """
    node_ids: dict[str, int] = {}

    def module_node_id(mod: Module | None) -> int:
        if mod is None:
            return 0
        existing = node_ids.get(mod.key)
        if existing is not None:
            return existing
        node = result.requires.add(ModNode(path=mod.path, version=mod.version))
        node_ids[mod.key] = node.id
        if mod.replace is not None:
            node.replace = module_node_id(mod.replace)
        return node.id

    for pkg_node in result.imports:
        pkg_node.module = module_node_id(node_pkgs[pkg_node.id].module)

    required_by: dict[int, set[int]] = {}
    for pkg_node in result.imports:
        if not pkg_node.module:
            continue
        preds = required_by.setdefault(pkg_node.module, set())
        for pred_id in pkg_node.imported_by:
            pred_mod = result.imports[pred_id].module
            if pred_mod and pred_mod != pkg_node.module:
                preds.add(pred_mod)
    for mod_id, preds in required_by.items():
        result.requires[mod_id].required_by = sorted(preds)

    for pkg_id in result.imports.entries:
        mod_id = result.imports[pkg_id].module
        if mod_id and mod_id not in result.requires.entries:
            result.requires.entries.append(mod_id)

    for vuln in result.vulns:
        if not vuln.import_sink:
            continue
        mod_id = result.imports[vuln.import_sink].module
        if not mod_id:
            continue
        vuln.set_sink("require", mod_id)
        vuln.mod_path = result.requires[mod_id].path


# ── Calls ──────────────────────────────────────────────────────────────────


def vuln_call_graph_slice(
    entries: list[Function],
    mod_vulns: ModuleVulnerabilities,
    cg: ProgramCallGraph,
    result: Result,
) -> None:
    """Slice *cg* down to functions leading to vulnerable calls.

    Vulnerable functions get a node before their callees are visited, so a
    cycle through a vulnerable function keeps it on the slice.
    """

    def classify(f: Function) -> list[Entry]:
        if f not in cg:
            return []
        return mod_vulns.vulns_for_symbol(f.pkg_path, f.db_name)

    def make_node(f: Function) -> FuncNode:
        return result.calls.add(
            FuncNode(
                name=f.name,
                pkg_path=f.pkg_path,
                recv_type=f.recv_type,
                position=f.position,
            )
        )

    def link(parent: FuncNode, site: CallInstruction | None, child: FuncNode) -> None:
        child.call_sites.append(
            CallSite(
                parent=parent.id,
                name=site.name if site is not None else "",
                recv_type=site.recv_type if site is not None else "",
                position=site.position if site is not None else None,
                resolved=site.resolved if site is not None else True,
            )
        )

    def finish(f: Function, node: FuncNode, vulns: list[Entry]) -> None:
        db_path = mod_vulns.db_package_path(f.pkg_path)
        for osv in vulns:
            if not any(a.package.name == db_path for a in osv.affected):
                continue
            vuln = result.find_vuln(osv.id, f.db_name, f.pkg_path)
            if vuln is None:
                # No import-level finding recorded for this symbol.
                log.debug("slice.call_sink_without_import", osv=osv.id, symbol=f.db_name)
                continue
            vuln.set_sink("call", node.id)

    kept = prune_slice(
        entries,
        edges=lambda f: ((e.site, e.callee) for e in cg.out_edges(f)),
        classify=classify,
        make_node=make_node,
        link=link,
        finish=finish,
        eager=True,
    )
    result.calls.entries.extend(n.id for n in kept)
