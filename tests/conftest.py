"""Shared pytest fixtures for vulnreach tests."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from vulnreach.callgraph import restrict_call_graph
from vulnreach.loaders.program_json import load_program
from vulnreach.osv import models as osv
from vulnreach.program import Function, Program, ProgramCallGraph
from vulnreach.testing import FakeVulnDBClient

# golang.org/amod/avuln.{VulnData.Vuln1, VulnData.Vuln2}
VA = osv.Entry(
    id="VA",
    details="Vulnerable data handling in avuln.",
    affected=[
        osv.Affected(
            package=osv.Package(name="golang.org/amod/avuln"),
            ranges=[
                osv.Range(
                    type=osv.TYPE_SEMVER,
                    events=[
                        osv.RangeEvent(introduced="1.0.0"),
                        osv.RangeEvent(fixed="1.0.4"),
                        osv.RangeEvent(introduced="1.1.2"),
                    ],
                )
            ],
            ecosystem_specific=osv.EcosystemSpecific(symbols=["VulnData.Vuln1", "VulnData.Vuln2"]),
        )
    ],
)

# golang.org/bmod/bvuln.{Vuln}, every version
VB = osv.Entry(
    id="VB",
    details="bvuln.Vuln is vulnerable.",
    affected=[
        osv.Affected(
            package=osv.Package(name="golang.org/bmod/bvuln"),
            ranges=[osv.Range(type=osv.TYPE_SEMVER)],
            ecosystem_specific=osv.EcosystemSpecific(symbols=["Vuln"]),
        )
    ],
)


@pytest.fixture
def vuln_client() -> FakeVulnDBClient:
    return FakeVulnDBClient({"golang.org/amod": [VA], "golang.org/bmod": [VB]})


# Package (left) and module (right) imports graphs:
#
#       entry/x        entry/y                     entry
#              \     /        \                   /     \
#            amod/avuln      zmod/z           amod       zmod
#                |                              |
#              wmod/w                         wmod
#                |                              |
#            bmod/bvuln                       bmod
IMPORTS_PROGRAM = {
    "modules": [
        {"path": "golang.org/entry"},
        {"path": "golang.org/zmod", "version": "v0.0.0"},
        {"path": "golang.org/amod", "version": "v1.1.3"},
        {"path": "golang.org/bmod", "version": "v0.5.0"},
        {"path": "golang.org/wmod", "version": "v0.0.0"},
    ],
    "packages": [
        {
            "path": "golang.org/entry/x",
            "module": "golang.org/entry",
            "imports": ["golang.org/amod/avuln"],
        },
        {
            "path": "golang.org/entry/y",
            "module": "golang.org/entry",
            "imports": ["golang.org/amod/avuln", "golang.org/zmod/z"],
        },
        {"path": "golang.org/zmod/z", "module": "golang.org/zmod"},
        {
            "path": "golang.org/amod/avuln",
            "module": "golang.org/amod",
            "imports": ["golang.org/wmod/w"],
        },
        {
            "path": "golang.org/wmod/w",
            "module": "golang.org/wmod",
            "imports": ["golang.org/bmod/bvuln"],
        },
        {"path": "golang.org/bmod/bvuln", "module": "golang.org/bmod"},
    ],
    "functions": [
        {"id": "x.X", "name": "X", "package": "golang.org/entry/x"},
        {"id": "y.Y", "name": "Y", "package": "golang.org/entry/y"},
        {
            "id": "avuln.VulnData.Vuln1",
            "name": "Vuln1",
            "package": "golang.org/amod/avuln",
            "recv_type": "golang.org/amod/avuln.VulnData",
        },
        {
            "id": "avuln.VulnData.Vuln2",
            "name": "Vuln2",
            "package": "golang.org/amod/avuln",
            "recv_type": "golang.org/amod/avuln.VulnData",
        },
        {"id": "bvuln.Vuln", "name": "Vuln", "package": "golang.org/bmod/bvuln"},
    ],
    "roots": ["golang.org/entry/x", "golang.org/entry/y"],
}


# Call graph of the program below. Interface calls I.Vuln1 also carry coarse
# edges to every Vuln1 method; a value-flow analysis removes them.
#
#          x.X
#        /  |  \
#       /  d.D1 avuln.VulnData.Vuln1
#      /  /
#     c.C1
#      |
#    avuln.VulnData.Vuln2
#
#         ---------------y.Y----------------------
#        /           /           \         \       \
#    c.C4   I.Vuln1 (nil)    c.C2   bvuln.Vuln   c.C3$1
#      |                                 | |
#  y.benign                              e.E
CALL_PROGRAM = {
    "modules": [
        {"path": "golang.org/entry"},
        {"path": "golang.org/cmod", "version": "v1.1.3"},
        {"path": "golang.org/dmod", "version": "v0.5.0"},
        {"path": "golang.org/amod", "version": "v1.1.3"},
        {"path": "golang.org/bmod", "version": "v0.5.0"},
        {"path": "golang.org/emod", "version": "v1.5.0"},
    ],
    "packages": [
        {
            "path": "golang.org/entry/x",
            "module": "golang.org/entry",
            "imports": ["golang.org/cmod/c", "golang.org/dmod/d"],
        },
        {"path": "golang.org/entry/y", "module": "golang.org/entry", "imports": ["golang.org/cmod/c"]},
        {
            "path": "golang.org/cmod/c",
            "module": "golang.org/cmod",
            "imports": ["golang.org/amod/avuln", "golang.org/bmod/bvuln"],
        },
        {"path": "golang.org/dmod/d", "module": "golang.org/dmod", "imports": ["golang.org/cmod/c"]},
        {"path": "golang.org/amod/avuln", "module": "golang.org/amod"},
        {"path": "golang.org/bmod/bvuln", "module": "golang.org/bmod", "imports": ["golang.org/emod/e"]},
        {"path": "golang.org/emod/e", "module": "golang.org/emod"},
    ],
    "functions": [
        {
            "id": "x.X",
            "name": "X",
            "package": "golang.org/entry/x",
            "pos": {"filename": "x.go", "line": 8, "column": 6},
            "calls": [
                {
                    "name": "Vuln1",
                    "recv_type": "golang.org/cmod/c.I",
                    "pos": {"filename": "x.go", "line": 10, "column": 16},
                    "callees": ["avuln.VulnData.Vuln1", "d.internal.Vuln1"],
                },
                {"name": "C1", "callee": "c.C1", "pos": {"filename": "x.go", "line": 10, "column": 8}},
                {"name": "D1", "callee": "d.D1", "pos": {"filename": "x.go", "line": 12, "column": 8}},
            ],
        },
        {
            "id": "y.Y",
            "name": "Y",
            "package": "golang.org/entry/y",
            "calls": [
                {"name": "C2", "callee": "c.C2"},
                {"name": "t0", "callees": ["bvuln.Vuln"]},
                {"name": "C3", "callee": "c.C3"},
                {"name": "t1", "callees": ["c.C3$1"]},
                {"name": "C4", "callee": "c.C4"},
                {
                    "name": "Vuln1",
                    "recv_type": "golang.org/cmod/c.I",
                    "callees": ["avuln.VulnData.Vuln1", "d.internal.Vuln1"],
                },
            ],
            "refs": ["y.benign"],
        },
        {"id": "y.benign", "name": "benign", "package": "golang.org/entry/y"},
        {
            "id": "c.C1",
            "name": "C1",
            "package": "golang.org/cmod/c",
            "calls": [{"name": "Vuln2", "callee": "avuln.VulnData.Vuln2"}],
        },
        {"id": "c.C2", "name": "C2", "package": "golang.org/cmod/c", "refs": ["bvuln.Vuln"]},
        {"id": "c.C3", "name": "C3", "package": "golang.org/cmod/c", "refs": ["c.C3$1"]},
        {"id": "c.C3$1", "name": "C3$1", "package": "golang.org/cmod/c"},
        {
            "id": "c.C4",
            "name": "C4",
            "package": "golang.org/cmod/c",
            "calls": [{"name": "f", "callees": ["y.benign"]}],
        },
        {
            "id": "d.D1",
            "name": "D1",
            "package": "golang.org/dmod/d",
            "calls": [
                {"name": "C1", "callee": "c.C1"},
                {
                    "name": "Vuln1",
                    "recv_type": "golang.org/cmod/c.I",
                    "callees": ["avuln.VulnData.Vuln1", "d.internal.Vuln1"],
                },
            ],
        },
        {
            "id": "d.internal.Vuln1",
            "name": "Vuln1",
            "package": "golang.org/dmod/d",
            "recv_type": "golang.org/dmod/d.internal",
        },
        {
            "id": "avuln.VulnData.Vuln1",
            "name": "Vuln1",
            "package": "golang.org/amod/avuln",
            "recv_type": "golang.org/amod/avuln.VulnData",
        },
        {
            "id": "avuln.VulnData.Vuln2",
            "name": "Vuln2",
            "package": "golang.org/amod/avuln",
            "recv_type": "golang.org/amod/avuln.VulnData",
        },
        {
            "id": "bvuln.Vuln",
            "name": "Vuln",
            "package": "golang.org/bmod/bvuln",
            "calls": [{"name": "E", "callee": "e.E"}],
            "refs": ["bvuln.Vuln"],
        },
        {
            "id": "e.E",
            "name": "E",
            "package": "golang.org/emod/e",
            "calls": [{"name": "f", "callees": ["bvuln.Vuln"]}],
        },
    ],
    "roots": ["golang.org/entry/x", "golang.org/entry/y"],
}

# Coarse edges a value-flow analysis proves impossible.
SPURIOUS_EDGES = {
    ("golang.org/entry/x.X", "golang.org/dmod/d.internal.Vuln1"),
    ("golang.org/entry/y.Y", "golang.org/amod/avuln.VulnData.Vuln1"),
    ("golang.org/entry/y.Y", "golang.org/dmod/d.internal.Vuln1"),
    ("golang.org/dmod/d.D1", "golang.org/amod/avuln.VulnData.Vuln1"),
}


@pytest.fixture
def imports_program() -> Program:
    return load_program(IMPORTS_PROGRAM)


@pytest.fixture
def call_program() -> Program:
    return load_program(CALL_PROGRAM)


@pytest.fixture
def imports_program_file(tmp_path) -> Path:
    path = tmp_path / "imports.json"
    path.write_text(json.dumps(IMPORTS_PROGRAM))
    return path


@pytest.fixture
def call_program_file(tmp_path) -> Path:
    path = tmp_path / "calls.json"
    path.write_text(json.dumps(CALL_PROGRAM))
    return path


@pytest.fixture
def va() -> osv.Entry:
    return VA


@pytest.fixture
def vb() -> osv.Entry:
    return VB


def _qualified(f: Function) -> str:
    return f"{f.pkg_path}.{f.db_name}"


@pytest.fixture
def vta_refiner():
    """Refiner that drops the coarse edges listed in SPURIOUS_EDGES."""

    def refine(funcs: set[Function], base: ProgramCallGraph) -> ProgramCallGraph:
        restricted = restrict_call_graph(funcs, base)
        refined = ProgramCallGraph()
        for f in restricted.functions:
            refined.add_node(f)
            for edge in restricted.out_edges(f):
                if (_qualified(f), _qualified(edge.callee)) not in SPURIOUS_EDGES:
                    refined.add_edge(edge.site, f, edge.callee)
        return refined

    return refine
