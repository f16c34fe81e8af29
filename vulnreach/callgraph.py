"""Staged call graph construction.

The coarse graph supplied by the loader over-approximates dynamic dispatch.
Before handing it to a precise refinement algorithm, the candidate function
set is pruned to what is forward reachable from the entry points and
actually linked into the program. The prune/refine step runs twice, the
second time seeded with the refined graph, which drops edges that only the
coarse seed introduced.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Protocol

import structlog

from vulnreach.program import Function, Program, ProgramCallGraph
from vulnreach.slicing import forward_reachable_from, prune_set

log = structlog.get_logger("vulnreach.callgraph")


class CallGraphRefiner(Protocol):
    """Precise call graph algorithm (e.g. type/value-flow analysis).

    Given the candidate functions and a base graph, returns a graph over
    those functions that is at least as precise as the base.
    """

    def __call__(self, funcs: set[Function], base: ProgramCallGraph) -> ProgramCallGraph: ...


def restrict_call_graph(funcs: set[Function], base: ProgramCallGraph) -> ProgramCallGraph:
    """Restrict *base* to *funcs*, keeping only edges between candidates.

    Default refiner when no precise algorithm is plugged in.
    """
    refined = ProgramCallGraph()
    for f in base.functions:
        if f not in funcs:
            continue
        refined.add_node(f)
        for edge in base.out_edges(f):
            if edge.callee in funcs:
                refined.add_edge(edge.site, f, edge.callee)
    return refined


def build_call_graph(
    program: Program,
    entries: Iterable[Function],
    refiner: CallGraphRefiner = restrict_call_graph,
) -> ProgramCallGraph:
    """Call graph of *program* restricted to what *entries* can reach."""
    entries = list(entries)
    initial = program.call_graph
    linked = program.functions

    fslice = forward_reachable_from(entries, initial)
    prune_set(fslice, linked)
    refined = refiner(fslice, initial)
    log.debug(
        "callgraph.first_pass",
        candidates=len(fslice),
        nodes=len(refined),
        edges=refined.edge_count(),
    )

    fslice = forward_reachable_from(entries, refined)
    prune_set(fslice, linked)
    final = refiner(fslice, refined)
    log.debug(
        "callgraph.second_pass",
        candidates=len(fslice),
        nodes=len(final),
        edges=final.edge_count(),
    )
    return final
