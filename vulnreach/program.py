"""In-memory model of the analyzed program.

This is what a source loader hands to the analysis: packages with their
import edges and owning modules, the functions each package defines, and a
coarse whole-program call graph. All objects compare by identity so they can
key memo tables during graph traversals.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field


@dataclass(frozen=True)
class Position:
    """Source position; ``line == 0`` means unknown."""

    filename: str = ""
    line: int = 0
    column: int = 0
    offset: int = 0

    def is_valid(self) -> bool:
        return self.line > 0

    def __str__(self) -> str:
        if not self.filename:
            return "-"
        if not self.is_valid():
            return self.filename
        if self.column:
            return f"{self.filename}:{self.line}:{self.column}"
        return f"{self.filename}:{self.line}"


@dataclass(eq=False)
class Module:
    path: str
    version: str = ""  # "" = unknown / local
    replace: Module | None = None

    @property
    def key(self) -> str:
        return f"{self.path}@{self.version}"

    @property
    def resolved(self) -> Module:
        """The module actually built (one level of ``replace``)."""
        return self.replace or self


@dataclass(eq=False)
class Package:
    name: str
    path: str
    imports: list[Package] = field(default_factory=list)
    module: Module | None = None
    functions: list[Function] = field(default_factory=list)

    def symbols(self) -> list[str]:
        """Top-level functions and methods, named as vulnerability databases do."""
        seen: set[str] = set()
        names: list[str] = []
        for f in self.functions:
            if f.is_anonymous:
                continue
            name = f.db_name
            if name not in seen:
                seen.add(name)
                names.append(name)
        return names

    def __repr__(self) -> str:
        return f"Package({self.path!r})"


def db_type_format(type_str: str) -> str:
    """Format a receiver type the way databases record it.

    Pointer designation and the package qualifier are dropped:
    ``*golang.org/amod/avuln.VulnData`` -> ``VulnData``.
    """
    t = type_str.lstrip("*")
    # Keep type arguments intact, only strip the qualifier of the base name.
    base, bracket, rest = t.partition("[")
    slash = base.rfind("/")
    dot = base.find(".", slash + 1)
    if dot != -1:
        base = base[dot + 1 :]
    return base + bracket + rest


@dataclass(eq=False)
class Function:
    name: str
    package: Package | None = None
    recv_type: str = ""
    position: Position | None = None
    calls: list[CallInstruction] = field(default_factory=list)
    # Functions used as values inside this one (closures, method values, callbacks).
    referenced: list[Function] = field(default_factory=list)

    @property
    def pkg_path(self) -> str:
        return self.package.path if self.package else ""

    @property
    def is_anonymous(self) -> bool:
        return "$" in self.name

    @property
    def is_exported(self) -> bool:
        return bool(self.name) and self.name[0].isupper() and not self.is_anonymous

    @property
    def db_name(self) -> str:
        """``Type.Method`` for methods, ``Func`` otherwise."""
        if self.recv_type:
            return f"{db_type_format(self.recv_type)}.{self.name}"
        return self.name

    def add_call(
        self,
        name: str,
        *,
        static_callee: Function | None = None,
        recv_type: str = "",
        position: Position | None = None,
    ) -> CallInstruction:
        call = CallInstruction(
            parent=self,
            name=name,
            static_callee=static_callee,
            recv_type=recv_type,
            position=position,
        )
        self.calls.append(call)
        return call

    def __repr__(self) -> str:
        return f"Function({self.pkg_path}.{self.db_name})"


@dataclass(eq=False)
class CallInstruction:
    parent: Function
    name: str  # displayed callee name, e.g. the called variable or method
    recv_type: str = ""  # interface type for dynamic dispatch, "" otherwise
    position: Position | None = None
    static_callee: Function | None = None

    @property
    def resolved(self) -> bool:
        return self.static_callee is not None


@dataclass(frozen=True, eq=False)
class CallEdge:
    site: CallInstruction | None  # None for synthetic edges
    callee: Function


class ProgramCallGraph:
    """Whole-program call graph: caller -> out edges.

    Only functions added as nodes belong to the graph; a function without a
    node is outside the analyzed program slice.
    """

    def __init__(self) -> None:
        self._out: dict[Function, list[CallEdge]] = {}
        self._by_site: dict[CallInstruction, list[Function]] = {}

    def add_node(self, f: Function) -> None:
        self._out.setdefault(f, [])

    def add_edge(self, site: CallInstruction | None, caller: Function, callee: Function) -> None:
        self.add_node(caller)
        self.add_node(callee)
        self._out[caller].append(CallEdge(site=site, callee=callee))
        if site is not None:
            self._by_site.setdefault(site, []).append(callee)

    def __contains__(self, f: object) -> bool:
        return f in self._out

    def __len__(self) -> int:
        return len(self._out)

    @property
    def functions(self) -> Iterable[Function]:
        return self._out.keys()

    def out_edges(self, f: Function) -> list[CallEdge]:
        return self._out.get(f, [])

    def site_callees(self, call: CallInstruction) -> list[Function]:
        """Callees of the call site *call* according to this graph."""
        return list(self._by_site.get(call, ()))

    def edge_count(self) -> int:
        return sum(len(edges) for edges in self._out.values())


@dataclass
class Program:
    """Loaded program: entry packages, linked functions and a coarse call graph."""

    packages: list[Package]
    functions: set[Function] = field(default_factory=set)
    call_graph: ProgramCallGraph = field(default_factory=ProgramCallGraph)


def entry_points(packages: list[Package]) -> list[Function]:
    """Analysis roots of the top-level *packages*.

    ``main``/``init`` for commands; ``init`` plus every exported function and
    method for libraries.
    """
    entries: list[Function] = []
    for pkg in packages:
        if pkg.name == "main":
            entries.extend(
                f for f in pkg.functions if not f.recv_type and f.name in ("main", "init")
            )
            continue
        entries.extend(f for f in pkg.functions if f.is_exported or (f.name == "init" and not f.recv_type))
    return entries
