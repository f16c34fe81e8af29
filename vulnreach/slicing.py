"""Reachability-pruned graph slicing.

``prune_slice`` is the traversal shared by the import slice and the call
graph slice: a memoised post-order DFS that keeps a vertex only if it is a
sink itself or leads to a kept vertex. It runs on an explicit stack, so deep
graphs do not hit the interpreter recursion limit.

``forward_reachable_from`` and ``prune_set`` seed call graph construction.
"""

from __future__ import annotations

from collections.abc import Callable, Hashable, Iterable, Iterator
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from vulnreach.program import Function, ProgramCallGraph

T = TypeVar("T", bound=Hashable)  # input vertex
E = TypeVar("E")  # edge label
N = TypeVar("N")  # slice node
S = TypeVar("S")  # sink info


@dataclass
class _Frame(Generic[T, E, N, S]):
    item: T
    info: S
    node: N | None
    edges: Iterator[tuple[E, T]]
    on_slice: list[tuple[E, N]] = field(default_factory=list)
    pending: Any = None


def prune_slice(
    roots: Iterable[T],
    *,
    edges: Callable[[T], Iterable[tuple[E, T]]],
    classify: Callable[[T], S],
    make_node: Callable[[T], N],
    link: Callable[[N, E, N], None],
    finish: Callable[[T, N, S], None] | None = None,
    eager: bool = False,
) -> list[N]:
    """Slice the graph under *roots* down to vertices leading to sinks.

    Args:
        roots: Traversal roots, visited in order.
        edges: Out edges of a vertex as ``(label, successor)`` pairs.
        classify: Sink info for a vertex; truthy marks a sink.
        make_node: Allocate the slice node of a kept vertex.
        link: ``link(parent, label, child)`` for every kept edge.
        finish: Called once per kept vertex after its edges are linked.
        eager: Allocate sink nodes before visiting successors, so a sink
            on a cycle through itself is already on the slice.

    Returns:
        Slice nodes of the roots that were kept, in root order, without
        duplicates.
    """
    analyzed: dict[T, N | None] = {}

    def enter(item: T) -> _Frame:
        info = classify(item)
        node = make_node(item) if (eager and info) else None
        # In-progress vertices read as "not on slice", which breaks cycles.
        analyzed[item] = node
        return _Frame(item=item, info=info, node=node, edges=iter(edges(item)))

    def complete(frame: _Frame) -> N | None:
        if not frame.on_slice and not frame.info:
            return None
        node = frame.node
        if node is None:
            node = make_node(frame.item)
            analyzed[frame.item] = node
        for label, child in frame.on_slice:
            link(node, label, child)
        if finish is not None:
            finish(frame.item, node, frame.info)
        return node

    def visit(root: T) -> N | None:
        if root in analyzed:
            return analyzed[root]
        stack = [enter(root)]
        while True:
            frame = stack[-1]
            descended = False
            for label, succ in frame.edges:
                if succ in analyzed:
                    succ_node = analyzed[succ]
                    if succ_node is not None:
                        frame.on_slice.append((label, succ_node))
                    continue
                frame.pending = label
                stack.append(enter(succ))
                descended = True
                break
            if descended:
                continue

            stack.pop()
            node = complete(frame)
            if not stack:
                return node
            parent = stack[-1]
            if node is not None:
                parent.on_slice.append((parent.pending, node))
            parent.pending = None

    kept: list[N] = []
    seen_nodes: set[int] = set()
    for root in roots:
        node = visit(root)
        if node is not None and id(node) not in seen_nodes:
            seen_nodes.add(id(node))
            kept.append(node)
    return kept


def forward_reachable_from(sources: Iterable[Function], cg: ProgramCallGraph) -> set[Function]:
    """Functions reachable from *sources*.

    ``g`` reaches ``f`` if ``g`` calls ``f`` according to *cg*, or uses
    ``f`` as a value (closures, method values, callbacks).
    """
    seen: set[Function] = set()
    stack = list(sources)
    while stack:
        f = stack.pop()
        if f in seen:
            continue
        seen.add(f)
        for call in f.calls:
            stack.extend(c for c in cg.site_callees(call) if c not in seen)
        stack.extend(r for r in f.referenced if r not in seen)
    return seen


def prune_set(candidates: set[Function], keep: set[Function]) -> None:
    """Drop from *candidates*, in place, every function not in *keep*."""
    candidates.intersection_update(keep)
