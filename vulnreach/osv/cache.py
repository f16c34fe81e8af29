"""On-disk cache of vulnerability database documents.

Layout, one directory per database::

    <root>/<db name>/index.json                     {"retrieved": ..., "index": {...}}
    <root>/<db name>/<escaped module path>/vulns.json [<OSV entry>, ...]

The index is stored with the time it was retrieved so ``HTTPSource`` can
decide when to revalidate it. Cached entries are only served while none of
them is older than the module's last-modified time in the index.
"""

from __future__ import annotations

import json
import os
from datetime import datetime, timezone
from pathlib import Path

import structlog
from pydantic import TypeAdapter, ValidationError

from vulnreach.osv.models import Entry

log = structlog.get_logger("vulnreach.osv.cache")

_entries_adapter = TypeAdapter(list[Entry])


def default_cache_root() -> Path:
    """``VULNREACH_CACHE``, else ``$XDG_CACHE_HOME/vulnreach``, else ``~/.cache/vulnreach``."""
    root = os.environ.get("VULNREACH_CACHE")
    if root:
        return Path(root)
    base = os.environ.get("XDG_CACHE_HOME") or Path.home() / ".cache"
    return Path(base) / "vulnreach"


def as_utc(t: datetime) -> datetime:
    """Naive datetimes are taken as UTC."""
    return t if t.tzinfo is not None else t.replace(tzinfo=timezone.utc)


def parse_time(value: str) -> datetime | None:
    """Parse an RFC 3339 timestamp; ``None`` when malformed."""
    if not isinstance(value, str):
        return None
    try:
        return as_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
    except ValueError:
        return None


class FileCache:
    """Index and per-module entries of each database, under *root*.

    Unreadable or corrupt cache files are reported and treated as misses;
    failed writes are reported and otherwise ignored.
    """

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    def _read_json(self, path: Path) -> object | None:
        try:
            return json.loads(path.read_text())
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError) as exc:
            log.warning("cache.unreadable", path=str(path), error=str(exc))
            return None

    def _write(self, path: Path, data: str | bytes) -> None:
        tmp = path.with_suffix(".tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            if isinstance(data, bytes):
                tmp.write_bytes(data)
            else:
                tmp.write_text(data)
            tmp.replace(path)
        except OSError as exc:
            log.warning("cache.write_failed", path=str(path), error=str(exc))

    # ── index ──

    def read_index(self, db_name: str) -> tuple[dict[str, str] | None, datetime | None]:
        """Cached index and its retrieval time, or ``(None, None)``."""
        raw = self._read_json(self.root / db_name / "index.json")
        if not isinstance(raw, dict):
            return None, None
        index = raw.get("index")
        retrieved = parse_time(raw.get("retrieved") or "")
        if not isinstance(index, dict) or retrieved is None:
            log.warning("cache.bad_index", db=db_name)
            return None, None
        return index, retrieved

    def write_index(self, db_name: str, index: dict[str, str], retrieved: datetime) -> None:
        doc = {"retrieved": retrieved.isoformat(), "index": index}
        self._write(self.root / db_name / "index.json", json.dumps(doc))

    # ── entries ──

    def read_entries(self, db_name: str, key: str) -> list[Entry] | None:
        """Cached entries under *key*, the escaped module path; ``None`` when nothing is cached."""
        path = self.root / db_name / key / "vulns.json"
        raw = self._read_json(path)
        if raw is None:
            return None
        try:
            return _entries_adapter.validate_python(raw)
        except ValidationError as exc:
            log.warning("cache.bad_entries", path=str(path), error=str(exc))
            return None

    def write_entries(self, db_name: str, key: str, entries: list[Entry]) -> None:
        path = self.root / db_name / key / "vulns.json"
        self._write(path, _entries_adapter.dump_json(entries, by_alias=True))


def default_cache() -> FileCache:
    return FileCache(default_cache_root())
