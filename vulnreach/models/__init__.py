"""Result data model re-exports."""

from vulnreach.models.result import (
    CallGraph,
    CallSite,
    FuncNode,
    ImportGraph,
    ModNode,
    PkgNode,
    RequireGraph,
    Result,
    Vuln,
)

__all__ = [
    "CallGraph",
    "CallSite",
    "FuncNode",
    "ImportGraph",
    "ModNode",
    "PkgNode",
    "RequireGraph",
    "Result",
    "Vuln",
]
