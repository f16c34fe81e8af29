"""Analysis configuration."""

from __future__ import annotations

import os
import platform
import sys
from dataclasses import dataclass, field

from vulnreach.callgraph import CallGraphRefiner, restrict_call_graph
from vulnreach.osv.client import DEFAULT_DB_URL, VulnDBClient, split_urls

# Python platform names -> Go GOOS / GOARCH values.
_GOOS = {
    "linux": "linux",
    "darwin": "darwin",
    "win32": "windows",
    "cygwin": "windows",
    "freebsd": "freebsd",
    "openbsd": "openbsd",
    "netbsd": "netbsd",
}
_GOARCH = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "i386": "386",
    "i686": "386",
    "x86": "386",
    "armv7l": "arm",
    "armv6l": "arm",
    "ppc64le": "ppc64le",
    "s390x": "s390x",
    "riscv64": "riscv64",
}


def host_goos() -> str:
    plat = sys.platform
    for prefix, goos in _GOOS.items():
        if plat.startswith(prefix):
            return goos
    return plat


def host_goarch() -> str:
    machine = platform.machine().lower()
    return _GOARCH.get(machine, machine)


def default_goos() -> str:
    return os.environ.get("GOOS") or host_goos()


def default_goarch() -> str:
    return os.environ.get("GOARCH") or host_goarch()


def default_db_urls() -> list[str]:
    """Database URLs from ``VULNREACH_DB``, then ``GOVULNDB`` (comma-separated)."""
    raw = os.environ.get("VULNREACH_DB") or os.environ.get("GOVULNDB") or DEFAULT_DB_URL
    return split_urls(raw)


@dataclass
class Config:
    """Knobs for a single analysis run."""

    client: VulnDBClient
    # Analyze import chains only; skip call graph construction.
    imports_only: bool = False
    goos: str = field(default_factory=default_goos)
    goarch: str = field(default_factory=default_goarch)
    refiner: CallGraphRefiner = restrict_call_graph
