"""VulnChecker facade: single entry point for source and binary analysis.

Scenarios:
    1. Source analysis of a loaded program description (imports, requires and,
       unless imports-only, the call graph), with witness chains and stacks
    2. Binary analysis from build info and a symbol table
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path

from vulnreach.binary import binary
from vulnreach.callgraph import CallGraphRefiner
from vulnreach.config import Config
from vulnreach.filter import extract_modules
from vulnreach.loaders.buildinfo import load_binary, parse_build_info, parse_symbols
from vulnreach.loaders.program_json import load_program
from vulnreach.models.result import Result, Vuln
from vulnreach.osv.client import VulnDBClient
from vulnreach.program import Module, Program
from vulnreach.source import source
from vulnreach.witness import CallStack, ImportChain, call_stacks, import_chains

logger = logging.getLogger(__name__)


# ── Request / Response dataclasses ────────────────────────────────────────


@dataclass
class SourceRequest:
    """Input for scenario 1: either a description file or a loaded program."""

    program_path: str | Path | None = None
    program: Program | None = None
    imports_only: bool = False


@dataclass
class BinaryRequest:
    """Input for scenario 2.

    Either ``exe`` (analyzed through the go command) or the captured
    ``go version -m`` / ``go tool nm`` outputs.
    """

    exe: str | Path | None = None
    build_info: str | None = None
    symbols: str | None = None
    imports_only: bool = False


@dataclass
class Analysis:
    """Result plus the data needed to present it."""

    result: Result
    # Module path -> version the analyzed program builds with.
    module_versions: dict[str, str] = field(default_factory=dict)
    import_chains: dict[Vuln, list[ImportChain]] = field(default_factory=dict)
    # None when no call graph was analyzed.
    call_stacks: dict[Vuln, list[CallStack]] | None = None


def _module_versions(modules: list[Module]) -> dict[str, str]:
    versions: dict[str, str] = {}
    for m in modules:
        r = m.resolved
        versions[m.path] = r.version
        versions[r.path] = r.version
    return versions


# ── VulnChecker facade ───────────────────────────────────────────────────


class VulnChecker:
    """Coordinates the database client, loaders, analysis and witness search.

    Usage::

        async with new_client(urls) as client:
            checker = VulnChecker(client)
            analysis = await checker.check_source(SourceRequest(program_path="prog.json"))
    """

    def __init__(
        self,
        client: VulnDBClient,
        *,
        goos: str | None = None,
        goarch: str | None = None,
        refiner: CallGraphRefiner | None = None,
    ) -> None:
        self._client = client
        self._goos = goos
        self._goarch = goarch
        self._refiner = refiner

    def _config(self, imports_only: bool) -> Config:
        cfg = Config(client=self._client, imports_only=imports_only)
        if self._goos:
            cfg.goos = self._goos
        if self._goarch:
            cfg.goarch = self._goarch
        if self._refiner is not None:
            cfg.refiner = self._refiner
        return cfg

    # ── Scenario 1: source ───────────────────────────────────────────────

    async def check_source(self, request: SourceRequest) -> Analysis:
        program = request.program
        if program is None:
            if request.program_path is None:
                raise ValueError("SourceRequest needs program or program_path")
            program = await asyncio.to_thread(load_program, request.program_path)

        cfg = self._config(request.imports_only)
        result = await source(program.packages, cfg, program)
        analysis = Analysis(
            result=result,
            module_versions=_module_versions(extract_modules(program.packages)),
            import_chains=await import_chains(result),
        )
        if not request.imports_only:
            analysis.call_stacks = await call_stacks(result)
        logger.info(
            "Source analysis: %d vulns, %d called",
            len(result.vulns),
            sum(1 for v in result.vulns if v.call_sink),
        )
        return analysis

    # ── Scenario 2: binary ───────────────────────────────────────────────

    async def check_binary(self, request: BinaryRequest) -> Analysis:
        if request.exe is not None:
            modules, symbols = await asyncio.to_thread(load_binary, request.exe)
        elif request.build_info is not None and request.symbols is not None:
            modules = parse_build_info(request.build_info)
            symbols = parse_symbols(request.symbols)
        else:
            raise ValueError("BinaryRequest needs exe, or both build_info and symbols")

        cfg = self._config(request.imports_only)
        result = await binary(modules, symbols, cfg)
        logger.info("Binary analysis: %d vulns", len(result.vulns))
        return Analysis(result=result, module_versions=_module_versions(modules))
