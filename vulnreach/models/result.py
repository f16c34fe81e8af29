"""Analysis result: backward import/require/call graph slices plus findings.

The graphs point from vulnerable sinks toward entry points (``imported_by``,
``required_by``, call-site parents). Nodes live in a flat arena owned by each
graph; node ids are positive, sequential per graph, and assigned only to nodes
that survive slicing.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Generic, TypeVar

from vulnreach.exceptions import GraphInvariantError
from vulnreach.osv.models import Entry
from vulnreach.program import Position


@dataclass(eq=False)
class PkgNode:
    name: str
    path: str
    id: int = 0
    # ID of the corresponding node in the Requires graph, 0 if none.
    module: int = 0
    # IDs of packages directly importing this package.
    imported_by: list[int] = field(default_factory=list)


@dataclass(eq=False)
class ModNode:
    path: str
    version: str = ""
    id: int = 0
    # ID of the replacement module node, 0 if none.
    replace: int = 0
    # IDs of the modules requiring this module.
    required_by: list[int] = field(default_factory=list)


@dataclass(eq=False)
class CallSite:
    # ID of the enclosing (calling) function.
    parent: int
    # Name of the function (variable) being called.
    name: str
    # Full path of the receiver object type, for dynamic dispatch.
    recv_type: str = ""
    position: Position | None = None
    # Whether the called function can be statically resolved.
    resolved: bool = True


@dataclass(eq=False)
class FuncNode:
    name: str
    pkg_path: str = ""
    recv_type: str = ""
    id: int = 0
    position: Position | None = None
    # Call sites where this function is called, one per on-slice caller edge.
    call_sites: list[CallSite] = field(default_factory=list)

    def __str__(self) -> str:
        if not self.recv_type:
            return f"{self.pkg_path}.{self.name}"
        return f"{self.recv_type}.{self.name}"


N = TypeVar("N", PkgNode, ModNode, FuncNode)


class _SliceGraph(Generic[N]):
    """Arena of nodes indexed by id, plus the ids of entry nodes."""

    kind = "node"

    def __init__(self) -> None:
        self._nodes: list[N] = []
        self.entries: list[int] = []

    def add(self, node: N) -> N:
        """Store *node* and assign it the next id."""
        if node.id:
            raise GraphInvariantError(f"{self.kind} {node.id} already belongs to a graph")
        self._nodes.append(node)
        node.id = len(self._nodes)
        return node

    def __getitem__(self, node_id: int) -> N:
        if node_id <= 0 or node_id > len(self._nodes):
            raise GraphInvariantError(f"dangling {self.kind} id {node_id}")
        return self._nodes[node_id - 1]

    def get(self, node_id: int) -> N | None:
        if 0 < node_id <= len(self._nodes):
            return self._nodes[node_id - 1]
        return None

    def __contains__(self, node_id: object) -> bool:
        return isinstance(node_id, int) and 0 < node_id <= len(self._nodes)

    def __iter__(self) -> Iterator[N]:
        return iter(self._nodes)

    def __len__(self) -> int:
        return len(self._nodes)


class ImportGraph(_SliceGraph[PkgNode]):
    """Package import slice whose sinks are packages with known vulnerabilities."""

    kind = "package"


class RequireGraph(_SliceGraph[ModNode]):
    """Module require slice whose sinks are modules with vulnerable packages."""

    kind = "module"


class CallGraph(_SliceGraph[FuncNode]):
    """Call graph slice whose sinks are vulnerable functions and methods."""

    kind = "function"


@dataclass(eq=False)
class Vuln:
    """A vulnerable symbol and its place in the Result graphs.

    Sink ids are 0 when the symbol is not reachable through that graph
    (always 0 in binary mode).
    """

    osv: Entry
    symbol: str
    pkg_path: str
    mod_path: str = ""
    call_sink: int = 0
    import_sink: int = 0
    require_sink: int = 0

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.osv.id, self.symbol, self.pkg_path)

    def set_sink(self, kind: str, node_id: int) -> None:
        """Set ``<kind>_sink`` once; a conflicting rewrite is a builder bug."""
        attr = f"{kind}_sink"
        current = getattr(self, attr)
        if current and current != node_id:
            raise GraphInvariantError(
                f"{attr} of {self.key} already set to {current}, refusing {node_id}"
            )
        setattr(self, attr, node_id)


@dataclass
class Result:
    imports: ImportGraph = field(default_factory=ImportGraph)
    requires: RequireGraph = field(default_factory=RequireGraph)
    calls: CallGraph = field(default_factory=CallGraph)
    vulns: list[Vuln] = field(default_factory=list)
    _by_key: dict[tuple[str, str, str], Vuln] = field(default_factory=dict, repr=False)

    def __post_init__(self) -> None:
        for v in self.vulns:
            self._by_key.setdefault(v.key, v)

    def add_vuln(self, vuln: Vuln) -> Vuln:
        """Record *vuln* unless one with the same key exists; return the stored one."""
        existing = self._by_key.get(vuln.key)
        if existing is not None:
            return existing
        self._by_key[vuln.key] = vuln
        self.vulns.append(vuln)
        return vuln

    def find_vuln(self, osv_id: str, symbol: str, pkg_path: str) -> Vuln | None:
        return self._by_key.get((osv_id, symbol, pkg_path))
