"""Recover modules and symbols of a Go executable from Go tool output.

``go version -m EXE`` prints the embedded build info; ``go tool nm EXE``
lists the symbol table. Stripped binaries have no symbols and are not
supported.
"""

from __future__ import annotations

import logging
import re
import subprocess
from pathlib import Path
from urllib.parse import unquote

from vulnreach.exceptions import LoaderError
from vulnreach.program import Module

logger = logging.getLogger(__name__)

_PATH_LINE = "path\t"
_MOD_LINE = "mod\t"
_DEP_LINE = "dep\t"
_REP_LINE = "=>\t"

# Type argument lists of instantiated generic functions, e.g. "Map[...]".
_TYPE_ARGS = re.compile(r"\[[^\[\]]*\]")


def parse_build_info(text: str) -> list[Module]:
    """Dependency modules, with replacements, from ``go version -m`` output.

    Raises:
        LoaderError: A malformed ``mod``/``dep``/``=>`` line.
    """
    deps: list[Module] = []
    last: Module | None = None
    for lineno, raw in enumerate(text.splitlines(), 1):
        line = raw.strip(" \t\r")
        if line.startswith(_PATH_LINE):
            continue
        if line.startswith(_MOD_LINE):
            # The main module is not a dependency but may still be replaced.
            last = _module_line(line[len(_MOD_LINE) :], lineno)
        elif line.startswith(_DEP_LINE):
            last = _module_line(line[len(_DEP_LINE) :], lineno)
            deps.append(last)
        elif line.startswith(_REP_LINE):
            elem = line[len(_REP_LINE) :].split("\t")
            if len(elem) not in (2, 3) or last is None:
                raise LoaderError(f"build info line {lineno}: unexpected replacement {raw!r}")
            last.replace = Module(path=elem[0], version=elem[1])
            last = None
    return deps


def _module_line(rest: str, lineno: int) -> Module:
    elem = rest.split("\t")
    if len(elem) not in (2, 3):
        raise LoaderError(f"build info line {lineno}: malformed module {rest!r}")
    return Module(path=elem[0], version=elem[1])


def split_symbol(name: str) -> tuple[str, str] | None:
    """Split a linker symbol into ``(package path, symbol)``.

    ``golang.org/amod/avuln.(*VulnData).Vuln1`` -> ``("golang.org/amod/avuln",
    "VulnData.Vuln1")``. Returns None for symbols without a package.
    """
    name = _TYPE_ARGS.sub("", name)
    slash = name.rfind("/")
    dot = name.find(".", slash + 1)
    if dot <= 0:
        return None
    pkg, rest = name[:dot], name[dot + 1 :]
    recv, sep, base = rest.rpartition(".")
    if not sep:
        return unquote(pkg), rest
    if recv.startswith("(*"):
        recv = recv.strip("(*)")
    return unquote(pkg), f"{recv}.{base}"


def parse_symbols(text: str) -> dict[str, list[str]]:
    """Package path -> function symbols, from ``go tool nm`` output."""
    symbols: dict[str, list[str]] = {}
    for line in text.splitlines():
        fields = line.split(None, 2)
        if len(fields) != 3:
            # Undefined symbols have no address.
            continue
        _addr, kind, name = fields
        if kind not in ("T", "t"):
            continue
        if name.startswith(("type:", "go:", "type.", "go.")):
            continue
        split = split_symbol(name)
        if split is None:
            continue
        pkg, sym = split
        symbols.setdefault(pkg, []).append(sym)
    return symbols


def _go(*args: str) -> str:
    cmd = ["go", *args]
    try:
        proc = subprocess.run(cmd, check=True, capture_output=True, text=True)
    except FileNotFoundError as e:
        raise LoaderError("go command not found on PATH") from e
    except subprocess.CalledProcessError as e:
        raise LoaderError(f"{' '.join(cmd)} failed: {e.stderr.strip()}") from e
    return proc.stdout


def load_binary(exe: str | Path) -> tuple[list[Module], dict[str, list[str]]]:
    """Modules and package symbols of the executable *exe*."""
    exe = str(exe)
    modules = parse_build_info(_go("version", "-m", exe))
    symbols = parse_symbols(_go("tool", "nm", exe))
    if not symbols:
        raise LoaderError(f"{exe}: no symbols found (stripped binary?)")
    logger.info("Loaded %s: %d modules, %d packages", exe, len(modules), len(symbols))
    return modules, symbols
