"""Local key entry storage: durable named byte blobs with string metadata."""

from __future__ import annotations

import asyncio
import base64
import hashlib
import json
import logging
import os
import tempfile
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from keyknox.exceptions import EntryLocation, KeyknoxError
from keyknox.models.entry import LocalEntry

if TYPE_CHECKING:
    from pathlib import Path

    from keyknox.models.entry import Meta

logger = logging.getLogger(__name__)


@runtime_checkable
class KeyEntryStorage(Protocol):
    """Protocol for the local store mirrored by ``SyncKeyStorage``."""

    async def save(self, name: str, value: bytes, meta: Meta | None = None) -> LocalEntry:
        """Store a new entry. Raises KeyknoxError (ENTRY_EXISTS) if the name is taken."""
        ...

    async def load(self, name: str) -> LocalEntry | None:
        """Return the entry, or None if absent."""
        ...

    async def update(self, name: str, value: bytes, meta: Meta | None = None) -> LocalEntry:
        """Replace an entry. Raises KeyknoxError (ENTRY_DOESNT_EXIST) if absent."""
        ...

    async def list(self) -> list[LocalEntry]:
        """Return all entries."""
        ...

    async def remove(self, name: str) -> bool:
        """Delete an entry. Returns False if it did not exist."""
        ...

    async def exists(self, name: str) -> bool:
        """Check whether an entry exists."""
        ...


class FileKeyEntryStorage:
    """Key entries stored as one JSON document per entry in a directory.

    File names are the SHA-256 of the entry name, so arbitrary names never
    escape the directory. Writes go through a temporary file and an atomic
    rename. Blocking file I/O runs in a worker thread.
    """

    def __init__(self, directory: Path) -> None:
        self.directory = directory

    def _path_for(self, name: str) -> Path:
        digest = hashlib.sha256(name.encode("utf-8")).hexdigest()
        return self.directory / f"{digest}.json"

    @staticmethod
    def _decode(raw: str) -> LocalEntry:
        data = json.loads(raw)
        return LocalEntry(
            name=data["name"],
            value=base64.b64decode(data["value"]),
            meta=dict(data.get("meta") or {}),
        )

    def _read(self, path: Path) -> LocalEntry | None:
        if not path.is_file():
            return None
        return self._decode(path.read_text(encoding="utf-8"))

    def _write(self, entry: LocalEntry) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        document = json.dumps(
            {
                "name": entry.name,
                "value": base64.b64encode(entry.value).decode("ascii"),
                "meta": entry.meta,
            },
            indent=2,
            sort_keys=True,
        )
        fd, tmp_name = tempfile.mkstemp(dir=self.directory, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(document)
            os.replace(tmp_name, self._path_for(entry.name))
        except BaseException:
            os.unlink(tmp_name)
            raise

    def _save_sync(self, entry: LocalEntry) -> LocalEntry:
        if self._path_for(entry.name).exists():
            raise KeyknoxError.entry_exists(entry.name, EntryLocation.LOCAL)
        self._write(entry)
        return entry

    def _update_sync(self, entry: LocalEntry) -> LocalEntry:
        if not self._path_for(entry.name).exists():
            raise KeyknoxError.entry_doesnt_exist(entry.name, EntryLocation.LOCAL)
        self._write(entry)
        return entry

    def _remove_sync(self, name: str) -> bool:
        try:
            self._path_for(name).unlink()
        except FileNotFoundError:
            return False
        return True

    def _list_sync(self) -> list[LocalEntry]:
        if not self.directory.is_dir():
            return []
        entries: list[LocalEntry] = []
        for path in self.directory.glob("*.json"):
            try:
                entries.append(self._decode(path.read_text(encoding="utf-8")))
            except (OSError, ValueError, KeyError) as exc:
                logger.warning("Skipping unreadable key entry file %s: %s", path.name, exc)
        return sorted(entries, key=lambda e: e.name)

    async def save(self, name: str, value: bytes, meta: Meta | None = None) -> LocalEntry:
        entry = LocalEntry(name=name, value=value, meta=dict(meta or {}))
        return await asyncio.to_thread(self._save_sync, entry)

    async def load(self, name: str) -> LocalEntry | None:
        return await asyncio.to_thread(self._read, self._path_for(name))

    async def update(self, name: str, value: bytes, meta: Meta | None = None) -> LocalEntry:
        entry = LocalEntry(name=name, value=value, meta=dict(meta or {}))
        return await asyncio.to_thread(self._update_sync, entry)

    async def list(self) -> list[LocalEntry]:
        return await asyncio.to_thread(self._list_sync)

    async def remove(self, name: str) -> bool:
        return await asyncio.to_thread(self._remove_sync, name)

    async def exists(self, name: str) -> bool:
        return await asyncio.to_thread(self._path_for(name).is_file)
