"""Load a program description produced by Go tooling.

The description is a JSON document::

    {
      "modules": [{"path": "golang.org/amod", "version": "v1.1.3",
                   "replace": {"path": "golang.org/amod2", "version": "v1.0.0"}}],
      "packages": [{"path": "golang.org/entry", "name": "entry",
                    "module": "golang.org/entry", "imports": ["golang.org/amod/avuln"]}],
      "functions": [{"id": "f1", "name": "Start", "package": "golang.org/entry",
                     "recv_type": "", "pos": {"filename": "entry.go", "line": 3},
                     "calls": [{"name": "Vuln1", "callee": "f2", "callees": ["f2"],
                                "pos": {...}}],
                     "refs": [], "linked": true}],
      "roots": ["golang.org/entry"]
    }

``callees`` lists every target of the coarse call graph for a call site; it
defaults to the static ``callee`` when omitted.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from vulnreach.exceptions import LoaderError
from vulnreach.program import Function, Module, Package, Position, Program

logger = logging.getLogger(__name__)


class PositionSchema(BaseModel):
    filename: str = ""
    line: int = 0
    column: int = 0
    offset: int = 0


class ReplaceSchema(BaseModel):
    path: str
    version: str = ""


class ModuleSchema(BaseModel):
    path: str
    version: str = ""
    replace: ReplaceSchema | None = None


class PackageSchema(BaseModel):
    path: str
    name: str = ""
    module: str | None = None
    imports: list[str] = Field(default_factory=list)


class CallSchema(BaseModel):
    name: str = ""
    recv_type: str = ""
    pos: PositionSchema | None = None
    callee: str | None = None
    callees: list[str] | None = None


class FunctionSchema(BaseModel):
    id: str
    name: str
    package: str | None = None
    recv_type: str = ""
    pos: PositionSchema | None = None
    calls: list[CallSchema] = Field(default_factory=list)
    refs: list[str] = Field(default_factory=list)
    linked: bool = True


class ProgramSchema(BaseModel):
    model_config = ConfigDict(extra="ignore")

    modules: list[ModuleSchema] = Field(default_factory=list)
    packages: list[PackageSchema] = Field(default_factory=list)
    functions: list[FunctionSchema] = Field(default_factory=list)
    roots: list[str] = Field(default_factory=list)


def _position(p: PositionSchema | None) -> Position | None:
    if p is None:
        return None
    return Position(filename=p.filename, line=p.line, column=p.column, offset=p.offset)


def load_program(source: str | Path | dict[str, Any]) -> Program:
    """Build a ``Program`` from a JSON file path or an already decoded document.

    Raises:
        LoaderError: Unreadable or malformed description, or a reference to an
            undeclared module, package or function.
    """
    if isinstance(source, dict):
        raw = source
    else:
        try:
            raw = json.loads(Path(source).read_text())
        except OSError as e:
            raise LoaderError(f"cannot read program description {source}: {e}") from e
        except json.JSONDecodeError as e:
            raise LoaderError(f"invalid JSON in {source}: {e}") from e

    try:
        schema = ProgramSchema.model_validate(raw)
    except ValidationError as e:
        raise LoaderError(f"invalid program description: {e}") from e

    return _build(schema)


def _build(schema: ProgramSchema) -> Program:
    modules: dict[str, Module] = {}
    for m in schema.modules:
        replace = Module(path=m.replace.path, version=m.replace.version) if m.replace else None
        modules[m.path] = Module(path=m.path, version=m.version, replace=replace)

    packages: dict[str, Package] = {}
    for p in schema.packages:
        if p.module is not None and p.module not in modules:
            raise LoaderError(f"package {p.path}: unknown module {p.module}")
        name = p.name or p.path.rsplit("/", 1)[-1]
        packages[p.path] = Package(name=name, path=p.path, module=modules.get(p.module or ""))
    for p in schema.packages:
        pkg = packages[p.path]
        for imp in p.imports:
            if imp not in packages:
                raise LoaderError(f"package {p.path}: unknown import {imp}")
            pkg.imports.append(packages[imp])

    functions: dict[str, Function] = {}
    for f in schema.functions:
        if f.id in functions:
            raise LoaderError(f"duplicate function id {f.id}")
        pkg = None
        if f.package is not None:
            pkg = packages.get(f.package)
            if pkg is None:
                raise LoaderError(f"function {f.id}: unknown package {f.package}")
        fn = Function(name=f.name, package=pkg, recv_type=f.recv_type, position=_position(f.pos))
        functions[f.id] = fn
        if pkg is not None:
            pkg.functions.append(fn)

    def resolve(fid: str, owner: str) -> Function:
        fn = functions.get(fid)
        if fn is None:
            raise LoaderError(f"function {owner}: unknown function {fid}")
        return fn

    program = Program(packages=[])
    cg = program.call_graph
    for f in schema.functions:
        caller = functions[f.id]
        cg.add_node(caller)
        if f.linked:
            program.functions.add(caller)
        for c in f.calls:
            static = resolve(c.callee, f.id) if c.callee else None
            call = caller.add_call(
                c.name,
                static_callee=static,
                recv_type=c.recv_type,
                position=_position(c.pos),
            )
            targets = c.callees if c.callees is not None else ([c.callee] if c.callee else [])
            for target in targets:
                cg.add_edge(call, caller, resolve(target, f.id))
        caller.referenced.extend(resolve(r, f.id) for r in f.refs)

    for root in schema.roots:
        if root not in packages:
            raise LoaderError(f"unknown root package {root}")
        program.packages.append(packages[root])

    logger.debug(
        "Loaded program: %d modules, %d packages, %d functions, %d roots",
        len(modules),
        len(packages),
        len(functions),
        len(program.packages),
    )
    return program
