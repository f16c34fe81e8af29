"""Vulnerability database clients.

A database is a tree of JSON documents::

    <base>/index.json          {"<module path>": "<last modified>", ...}
    <base>/<module path>.json  [<OSV entry>, ...]

Sources are reached over HTTP(S), optionally through an on-disk cache, or
read from a local ``file://`` directory.
``DBClient`` merges several sources, deduplicating entries by id.
"""

from __future__ import annotations

import asyncio
import json
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Iterable
from datetime import datetime, timedelta, timezone
from email.utils import format_datetime
from pathlib import Path
from typing import Any
from urllib.parse import unquote, urlparse

import httpx
import structlog
from pydantic import TypeAdapter, ValidationError

from vulnreach.exceptions import VulnDBError
from vulnreach.osv.cache import FileCache, as_utc, parse_time
from vulnreach.osv.models import Entry

log = structlog.get_logger("vulnreach.osv.client")

DEFAULT_DB_URL = "https://vuln.go.dev"

_MAX_RETRIES = 3
_RETRY_BASE_DELAY = 0.5  # seconds

# How long a cached index is trusted before it is revalidated.
INDEX_TTL = timedelta(hours=2)

_entries_adapter = TypeAdapter(list[Entry])


def escape_module_path(path: str) -> str:
    """Escape *path* the way the Go module proxy does (``A`` -> ``!a``)."""
    out = []
    for ch in path:
        if "A" <= ch <= "Z":
            out.append("!" + ch.lower())
        else:
            out.append(ch)
    return "".join(out)


def _parse_entries(source: str, raw: Any) -> list[Entry]:
    try:
        return _entries_adapter.validate_python(raw)
    except ValidationError as exc:
        raise VulnDBError(source, f"malformed entries: {exc}") from exc


def _db_name(base_url: str) -> str:
    """Cache directory name of a database: host plus path."""
    parsed = urlparse(base_url)
    name = (parsed.netloc + parsed.path).strip("/")
    return name.replace(":", "_").replace("/", "_") or "default"


def _is_fresh(entries: list[Entry], last_modified: str) -> bool:
    """Cached *entries* are fresh when none predates the index's timestamp."""
    modified = parse_time(last_modified)
    if modified is None:
        return False
    return all(e.modified is not None and as_utc(e.modified) >= modified for e in entries)


async def gather_all(aws: Iterable[Awaitable[Any]]) -> list[Any]:
    """Like ``asyncio.gather``, but a failure cancels the awaitables still running."""
    tasks = [asyncio.ensure_future(aw) for aw in aws]
    try:
        return await asyncio.gather(*tasks)
    except BaseException:
        for t in tasks:
            t.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


class VulnDBClient(ABC):
    """Read access to a vulnerability database."""

    @abstractmethod
    async def get_by_module(self, module_path: str) -> list[Entry]:
        """Return every entry affecting *module_path* (possibly empty)."""
        ...

    async def close(self) -> None:
        return None

    async def __aenter__(self) -> VulnDBClient:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()


class HTTPSource(VulnDBClient):
    """Database served over HTTP(S).

    With a *cache*, the index is reused for ``INDEX_TTL`` and then
    revalidated with ``If-Modified-Since``; module entries are served from
    the cache while they are at least as new as the index says.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
        cache: FileCache | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
            headers={"Accept": "application/json"},
        )
        self.cache = cache
        self.db_name = _db_name(self.base_url)
        self._index: dict[str, str] | None = None
        self._index_loaded = False
        self._index_lock = asyncio.Lock()

    async def close(self) -> None:
        await self._client.aclose()

    async def get_by_module(self, module_path: str) -> list[Entry]:
        index = await self._load_index()
        if index is not None and module_path not in index:
            return []
        key = escape_module_path(module_path)
        if self.cache is not None and index is not None:
            cached = await asyncio.to_thread(self.cache.read_entries, self.db_name, key)
            if cached and _is_fresh(cached, index[module_path]):
                log.debug("vulndb.cache_hit", source=self.base_url, module=module_path)
                return cached
        data = await self._get_json(f"/{key}.json")
        if data is None:
            return []
        entries = _parse_entries(self.base_url, data)
        if self.cache is not None and index is not None:
            await asyncio.to_thread(self.cache.write_entries, self.db_name, key, entries)
        return entries

    async def _load_index(self) -> dict[str, str] | None:
        """Fetch index.json once; ``None`` when the database has no index."""
        async with self._index_lock:
            if not self._index_loaded:
                self._index = await self._fetch_index()
                self._index_loaded = True
        return self._index

    async def _fetch_index(self) -> dict[str, str] | None:
        cached, retrieved = None, None
        if self.cache is not None:
            cached, retrieved = await asyncio.to_thread(self.cache.read_index, self.db_name)
        now = datetime.now(timezone.utc)
        if cached is not None and now - retrieved < INDEX_TTL:
            return cached

        headers = {}
        if cached is not None:
            headers["If-Modified-Since"] = format_datetime(retrieved, usegmt=True)
        resp = await self._get("/index.json", headers=headers)
        if resp.status_code == 304 and cached is not None:
            await asyncio.to_thread(self.cache.write_index, self.db_name, cached, now)
            return cached
        if resp.status_code == 404:
            return None
        data = self._decode(resp, "/index.json")
        if not isinstance(data, dict):
            raise VulnDBError(self.base_url, "index.json is not an object")
        if self.cache is not None:
            await asyncio.to_thread(self.cache.write_index, self.db_name, data, now)
        return data

    async def _get_json(self, path: str) -> Any | None:
        """GET *path* as JSON; ``None`` on 404."""
        resp = await self._get(path)
        if resp.status_code == 404:
            return None
        return self._decode(resp, path)

    def _decode(self, resp: httpx.Response, path: str) -> Any:
        try:
            return resp.json()
        except json.JSONDecodeError as exc:
            raise VulnDBError(self.base_url, f"GET {path}: invalid JSON") from exc

    async def _get(self, path: str, headers: dict[str, str] | None = None) -> httpx.Response:
        """GET *path*, retrying 5xx and transport errors; other 4xx except 404 raise."""
        last_exc: Exception | None = None
        for attempt in range(_MAX_RETRIES):
            try:
                resp = await self._client.get(path, headers=headers)
            except httpx.TransportError as exc:
                last_exc = exc
                log.warning(
                    "vulndb.transport_error",
                    source=self.base_url,
                    path=path,
                    attempt=attempt + 1,
                    error=str(exc),
                )
            else:
                if resp.status_code < 500:
                    if resp.status_code >= 400 and resp.status_code != 404:
                        raise VulnDBError(
                            self.base_url, f"GET {path}: HTTP {resp.status_code}"
                        )
                    return resp
                last_exc = VulnDBError(self.base_url, f"GET {path}: HTTP {resp.status_code}")
                log.warning(
                    "vulndb.server_error",
                    source=self.base_url,
                    path=path,
                    status=resp.status_code,
                    attempt=attempt + 1,
                )
            if attempt < _MAX_RETRIES - 1:
                await asyncio.sleep(_RETRY_BASE_DELAY * (2**attempt))

        if isinstance(last_exc, VulnDBError):
            raise last_exc
        raise VulnDBError(self.base_url, f"GET {path}: {last_exc}") from last_exc


class LocalSource(VulnDBClient):
    """Database laid out in a local directory."""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    async def get_by_module(self, module_path: str) -> list[Entry]:
        return await asyncio.to_thread(self._read, module_path)

    def _read(self, module_path: str) -> list[Entry]:
        path = self.root / f"{escape_module_path(module_path)}.json"
        if not path.is_file():
            return []
        try:
            raw = json.loads(path.read_text())
        except (OSError, json.JSONDecodeError) as exc:
            raise VulnDBError(str(self.root), f"reading {path}: {exc}") from exc
        return _parse_entries(str(self.root), raw)


class DBClient(VulnDBClient):
    """Merge entries from several sources; the first source wins on id clashes."""

    def __init__(self, sources: list[VulnDBClient]) -> None:
        if not sources:
            raise ValueError("DBClient needs at least one source")
        self.sources = sources

    async def get_by_module(self, module_path: str) -> list[Entry]:
        results = await gather_all(s.get_by_module(module_path) for s in self.sources)
        merged: list[Entry] = []
        seen: set[str] = set()
        for entries in results:
            for e in entries:
                if e.id in seen:
                    continue
                seen.add(e.id)
                merged.append(e)
        return merged

    async def close(self) -> None:
        for s in self.sources:
            await s.close()


def new_source(
    url: str, *, timeout: float = 30.0, cache: FileCache | None = None
) -> VulnDBClient:
    parsed = urlparse(url)
    if parsed.scheme in ("http", "https"):
        return HTTPSource(url, timeout=timeout, cache=cache)
    if parsed.scheme == "file":
        return LocalSource(unquote(parsed.path))
    raise ValueError(f"unsupported vulnerability database URL {url!r}")


def split_urls(urls: str) -> list[str]:
    """Split a comma-separated URL list, dropping blanks."""
    return [u.strip() for u in urls.split(",") if u.strip()]


def new_client(
    urls: list[str] | str, *, timeout: float = 30.0, cache: FileCache | None = None
) -> DBClient:
    """Build a client from URLs (a list or a comma-separated string).

    HTTP(S) sources read through *cache* when one is given.
    """
    if isinstance(urls, str):
        urls = split_urls(urls)
    return DBClient([new_source(u.strip(), timeout=timeout, cache=cache) for u in urls])
