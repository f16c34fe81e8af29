"""Witness search: representative import chains and call stacks.

Both searches run a BFS from a vulnerable sink back toward entry points,
visiting each node at most once. Every entry reached yields its own chain,
which is therefore of minimal length among paths to that entry. Some longer
paths are skipped on purpose to avoid enumerating every possible chain.

Searches run on worker threads over the finished, read-only ``Result``; only
the output mapping is shared between them.
"""

from __future__ import annotations

import asyncio
import threading
from collections import defaultdict, deque
from dataclasses import dataclass

from vulnreach.models.result import CallSite, FuncNode, PkgNode, Result, Vuln

# Packages from the entry package down to the vulnerable one.
ImportChain = list[PkgNode]


@dataclass(frozen=True)
class StackEntry:
    function: FuncNode
    # Call site in this frame leading to the next one; None for the last frame.
    call: CallSite | None = None


# Frames from the entry function down to the vulnerable symbol.
CallStack = list[StackEntry]


@dataclass(frozen=True)
class _Link:
    """Reverse singly linked chain built up during the search."""

    node: PkgNode | FuncNode
    call: CallSite | None = None
    child: _Link | None = None

    def unwind(self) -> list[_Link]:
        out: list[_Link] = []
        link: _Link | None = self
        while link is not None:
            out.append(link)
            link = link.child
        return out


# ── Import chains ──────────────────────────────────────────────────────────


def find_import_chains(sink_id: int, result: Result) -> list[ImportChain]:
    """Import chains leading to the package node *sink_id*, shortest first."""
    if not sink_id:
        return []
    graph = result.imports
    entries = set(graph.entries)
    start = _Link(node=graph[sink_id])
    if sink_id in entries:
        chains: list[ImportChain] = [[start.node]]
    else:
        chains = []

    seen: set[int] = set()
    queue = deque([start])
    while queue:
        chain = queue.popleft()
        pkg = chain.node
        if pkg.id in seen:
            continue
        seen.add(pkg.id)
        for imp_by in pkg.imported_by:
            importer = graph[imp_by]
            extended = _Link(node=importer, child=chain)
            if importer.id in entries:
                chains.append([link.node for link in extended.unwind()])
            queue.append(extended)
    return chains


async def import_chains(result: Result) -> dict[Vuln, list[ImportChain]]:
    """Import chains for each vulnerability of *result*.

    Searches run once per import sink; vulnerabilities sharing a package
    share its chains.
    """
    per_sink: dict[int, list[Vuln]] = defaultdict(list)
    for v in result.vulns:
        per_sink[v.import_sink].append(v)

    chains: dict[Vuln, list[ImportChain]] = {}
    lock = threading.Lock()

    def work(sink_id: int, vulns: list[Vuln]) -> None:
        found = find_import_chains(sink_id, result)
        with lock:
            for v in vulns:
                chains[v] = found

    await asyncio.gather(
        *(asyncio.to_thread(work, sink_id, vulns) for sink_id, vulns in per_sink.items())
    )
    return chains


# ── Call stacks ────────────────────────────────────────────────────────────


def find_call_stacks(sink_id: int, result: Result) -> list[CallStack]:
    """Call stacks leading to the function node *sink_id*, in BFS order."""
    if not sink_id:
        return []
    graph = result.calls
    entries = set(graph.entries)
    start = _Link(node=graph[sink_id])
    stacks: list[CallStack] = []
    if sink_id in entries:
        stacks.append(_to_stack(start))

    seen: set[int] = set()
    queue = deque([start])
    while queue:
        chain = queue.popleft()
        f = chain.node
        if f.id in seen:
            continue
        seen.add(f.id)
        for site in f.call_sites:
            caller = graph[site.parent]
            extended = _Link(node=caller, call=site, child=chain)
            if caller.id in entries:
                stacks.append(_to_stack(extended))
            queue.append(extended)
    return stacks


def _to_stack(chain: _Link) -> CallStack:
    return [StackEntry(function=link.node, call=link.call) for link in chain.unwind()]


async def call_stacks(result: Result) -> dict[Vuln, list[CallStack]]:
    """Call stacks for each vulnerability of *result*, most useful first.

    Shorter stacks with fewer dynamic call sites generally come first.
    """
    stacks: dict[Vuln, list[CallStack]] = {}
    lock = threading.Lock()

    def work(vuln: Vuln) -> None:
        found = sort_stacks(find_call_stacks(vuln.call_sink, result))
        with lock:
            stacks[vuln] = found

    await asyncio.gather(*(asyncio.to_thread(work, v) for v in result.vulns))
    return stacks


# ── Ranking ────────────────────────────────────────────────────────────────


def is_std_package(pkg: str) -> bool:
    """Standard library import paths have no dot in their first element."""
    if not pkg:
        return False
    return "." not in pkg.split("/", 1)[0]


def confidence(stack: CallStack) -> int:
    """Number of frames in standard library packages.

    Stacks through the standard library are often false positives, so lower
    is better.
    """
    return sum(1 for e in stack if is_std_package(e.function.pkg_path))


def weight(stack: CallStack) -> int:
    """Number of unresolved (dynamically dispatched) call sites."""
    return sum(1 for e in stack if e.call is not None and not e.call.resolved)


def stack_string(stack: CallStack) -> str:
    parts = []
    for e in stack:
        s = str(e.function)
        if e.call is not None and e.call.position is not None:
            p = e.call.position
            s = f"{s}[{p.filename}:{p.line}:{p.column}:{p.offset}]"
        parts.append(s)
    return "->".join(parts)


def stack_key(stack: CallStack) -> tuple[int, int, int, str]:
    return (confidence(stack), len(stack), weight(stack), stack_string(stack))


def sort_stacks(stacks: list[CallStack]) -> list[CallStack]:
    return sorted(stacks, key=stack_key)
