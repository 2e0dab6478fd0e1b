"""Scope a shared key entry storage to one identity by prefixing entry names."""

from __future__ import annotations

import asyncio
from dataclasses import replace
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from keyknox.filesystem.key_entry_storage import KeyEntryStorage
    from keyknox.models.entry import LocalEntry, Meta

IDENTITY_PREFIX = "_VIRGIL_IDENTITY="


class KeyEntryStorageWrapper:
    """View of a ``KeyEntryStorage`` holding only one identity's entries.

    Entries are stored as ``_VIRGIL_IDENTITY=<identity>.<name>`` so several
    identities can share one store. Names going in and out of this class are
    always the un-prefixed ones.

    Identities must be non-empty and free of ``.``: otherwise the prefix of
    ``alice`` would also match every entry of ``alice.work``.
    """

    def __init__(self, identity: str, storage: KeyEntryStorage) -> None:
        if not identity or "." in identity:
            raise ValueError(f"Invalid identity {identity!r}: must be non-empty without '.'")
        self.identity = identity
        self.storage = storage
        self.prefix = f"{IDENTITY_PREFIX}{identity}."

    def _stored_name(self, name: str) -> str:
        return f"{self.prefix}{name}"

    def _strip(self, entry: LocalEntry) -> LocalEntry:
        return replace(entry, name=entry.name.removeprefix(self.prefix))

    async def _own_entries(self) -> list[LocalEntry]:
        return [e for e in await self.storage.list() if e.name.startswith(self.prefix)]

    async def save(self, name: str, value: bytes, meta: Meta | None = None) -> LocalEntry:
        return self._strip(await self.storage.save(self._stored_name(name), value, meta))

    async def load(self, name: str) -> LocalEntry | None:
        entry = await self.storage.load(self._stored_name(name))
        return None if entry is None else self._strip(entry)

    async def update(self, name: str, value: bytes, meta: Meta | None = None) -> LocalEntry:
        return self._strip(await self.storage.update(self._stored_name(name), value, meta))

    async def exists(self, name: str) -> bool:
        return await self.storage.exists(self._stored_name(name))

    async def remove(self, name: str) -> bool:
        return await self.storage.remove(self._stored_name(name))

    async def list(self) -> list[LocalEntry]:
        return [self._strip(e) for e in await self._own_entries()]

    async def clear(self) -> None:
        """Remove every entry of this identity, leaving other identities alone."""
        entries = await self._own_entries()
        await asyncio.gather(*(self.storage.remove(e.name) for e in entries))
