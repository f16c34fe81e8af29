"""Rendering of analysis results as JSON or human-readable text."""

from __future__ import annotations

import json
from dataclasses import asdict
from typing import IO, Any

from vulnreach.models.result import FuncNode, Result, Vuln
from vulnreach.osv import semver
from vulnreach.osv.models import TYPE_SEMVER, Affected
from vulnreach.witness import CallStack

LABEL_WIDTH = 16
LINE_WIDTH = 80

# Exit status when vulnerabilities are found, following go vet.
EXIT_VULNS_FOUND = 3


# ── JSON ───────────────────────────────────────────────────────────────────


def _vuln_to_dict(v: Vuln) -> dict[str, Any]:
    return {
        "osv": v.osv.model_dump(mode="json", by_alias=True, exclude_none=True),
        "symbol": v.symbol,
        "pkg_path": v.pkg_path,
        "mod_path": v.mod_path,
        "call_sink": v.call_sink,
        "import_sink": v.import_sink,
        "require_sink": v.require_sink,
    }


def result_to_dict(result: Result) -> dict[str, Any]:
    """JSON-ready form of *result*; graph nodes are keyed by id."""
    return {
        "imports": {
            "packages": {str(n.id): asdict(n) for n in result.imports},
            "entries": list(result.imports.entries),
        },
        "requires": {
            "modules": {str(n.id): asdict(n) for n in result.requires},
            "entries": list(result.requires.entries),
        },
        "calls": {
            "functions": {str(n.id): asdict(n) for n in result.calls},
            "entries": list(result.calls.entries),
        },
        "vulns": [_vuln_to_dict(v) for v in result.vulns],
    }


def write_json(result: Result, out: IO[str]) -> None:
    json.dump(result_to_dict(result), out, indent=2)
    out.write("\n")


# ── Text ───────────────────────────────────────────────────────────────────


def wrap(s: str, max_width: int) -> str:
    """Break *s* at whitespace into lines of at most *max_width* characters.

    A single word longer than *max_width* stays on its own line.
    """
    lines: list[str] = []
    current = ""
    for word in s.split():
        if current and len(current) + len(word) + 1 > max_width:
            lines.append(current)
            current = ""
        current = f"{current} {word}" if current else word
    if current:
        lines.append(current)
    return "\n".join(lines)


def latest_fixed(affected: list[Affected]) -> str:
    """Latest fixed version across SEMVER ranges, or "" if none is fixed."""
    latest = ""
    for a in affected:
        for r in a.ranges:
            if r.type != TYPE_SEMVER:
                continue
            for e in r.events:
                if e.fixed and (not latest or (semver.compare(e.fixed, latest) or 0) > 0):
                    latest = e.fixed
    return latest


def group_by_id_and_package(vulns: list[Vuln], *, called_only: bool = True) -> list[list[Vuln]]:
    """Group *vulns* by (OSV id, package), ordered by package path.

    With *called_only*, vulnerabilities that are imported but never called
    are left out.
    """
    groups: dict[tuple[str, str], list[Vuln]] = {}
    for v in vulns:
        if called_only and not v.call_sink:
            continue
        groups.setdefault((v.osv.id, v.pkg_path), []).append(v)
    return sorted(groups.values(), key=lambda g: (g[0].pkg_path, g[0].osv.id))


def func_name(fn: FuncNode) -> str:
    return str(fn).lstrip("*")


def _symbols_summary(group: list[Vuln], stacks: dict[Vuln, list[CallStack]] | None) -> str:
    if stacks is None:
        names = sorted({v.symbol for v in group})
    else:
        # Unique tops of the call stacks, first stack of the first vuln leading.
        tops: list[FuncNode] = []
        for v in group:
            for stack in stacks.get(v, []):
                if stack and stack[0].function not in tops:
                    tops.append(stack[0].function)
        names = [func_name(f) for f in tops]
    if not names:
        return ""
    if len(names) == 1:
        return names[0]
    return f"{names[0]} and {len(names) - 1} others"


def write_text(
    result: Result,
    out: IO[str],
    *,
    module_versions: dict[str, str] | None = None,
    stacks: dict[Vuln, list[CallStack]] | None = None,
) -> None:
    """Write one block per (vulnerability, package) to *out*.

    With *stacks* (source mode with call analysis) only called
    vulnerabilities are listed and symbols name the entry functions;
    otherwise every finding is listed with its vulnerable symbols.
    """
    module_versions = module_versions or {}

    def line(label: str, text: str) -> None:
        out.write(f"{label:<{LABEL_WIDTH}}{text}\n")

    for group in group_by_id_and_package(result.vulns, called_only=stacks is not None):
        v0 = group[0]
        fixed = latest_fixed(v0.osv.affected)
        line("package:", v0.pkg_path)
        line("your version:", module_versions.get(v0.mod_path, ""))
        line("fixed version:", semver.canonicalize_prefix(fixed) if fixed else "")
        line("symbols:", _symbols_summary(group, stacks))
        line("reference:", f"https://pkg.go.dev/vuln/{v0.osv.id}")
        desc = wrap(v0.osv.details, LINE_WIDTH - LABEL_WIDTH).split("\n")
        for i, text in enumerate(desc):
            line("description:" if i == 0 else "", text)
        out.write("\n")


def exit_code(result: Result) -> int:
    return EXIT_VULNS_FOUND if result.vulns else 0
