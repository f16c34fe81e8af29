"""vulnreach: reachability analysis of known vulnerabilities in Go programs."""

from vulnreach.api import Analysis, BinaryRequest, SourceRequest, VulnChecker
from vulnreach.binary import binary
from vulnreach.config import Config
from vulnreach.models.result import Result, Vuln
from vulnreach.source import source
from vulnreach.witness import call_stacks, import_chains

__version__ = "0.1.0"

__all__ = [
    "Analysis",
    "BinaryRequest",
    "Config",
    "Result",
    "SourceRequest",
    "Vuln",
    "VulnChecker",
    "binary",
    "call_stacks",
    "import_chains",
    "source",
]
