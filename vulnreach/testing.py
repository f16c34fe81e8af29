"""Test doubles for vulnreach: use in integration tests.

Usage::

    from vulnreach.testing import FakeVulnDBClient

    client = FakeVulnDBClient({"golang.org/amod": [entry]})
    client = FakeVulnDBClient(error=VulnDBError("fake", "boom"))   # always fails
"""

from __future__ import annotations

from vulnreach.osv.client import VulnDBClient
from vulnreach.osv.models import Entry


class FakeVulnDBClient(VulnDBClient):
    """In-memory drop-in replacement for a database client.

    Parameters
    ----------
    entries:
        Module path -> entries returned for it. Unknown modules yield ``[]``.
    error:
        If set, every query raises it.
    """

    def __init__(
        self,
        entries: dict[str, list[Entry]] | None = None,
        *,
        error: Exception | None = None,
    ) -> None:
        self._entries = dict(entries or {})
        self._error = error
        self._calls: list[str] = []
        self.closed = False

    @property
    def calls(self) -> list[str]:
        """Module paths queried, in order: useful for assertions in tests."""
        return self._calls

    async def get_by_module(self, module_path: str) -> list[Entry]:
        self._calls.append(module_path)
        if self._error is not None:
            raise self._error
        return list(self._entries.get(module_path, []))

    async def close(self) -> None:
        self.closed = True
