"""Cloud key storage: an in-memory entry cache mirrored into the Keyknox blob."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from keyknox.exceptions import EntryLocation, KeyknoxError
from keyknox.models.entry import CloudEntry, NewEntry
from keyknox.services.datetime_service import now_utc
from keyknox.services.entry_serializer import deserialize, serialize
from keyknox.services.entry_utils import RESERVED_META_KEYS

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence
    from datetime import datetime

    from cryptography.hazmat.primitives.asymmetric.ec import (
        EllipticCurvePrivateKey,
        EllipticCurvePublicKey,
    )

    from keyknox.models.blob import RemoteBlob
    from keyknox.models.entry import Meta
    from keyknox.services.keyknox_manager import KeyknoxManager

logger = logging.getLogger(__name__)


def _check_meta(name: str, meta: Meta | None) -> None:
    reserved = sorted(RESERVED_META_KEYS.intersection(meta or {}))
    if reserved:
        raise ValueError(f"Meta of entry '{name}' uses reserved keys: {', '.join(reserved)}")


def _create_cloud_entry(entry: NewEntry, creation_date: datetime | None = None) -> CloudEntry:
    now = now_utc()
    return CloudEntry(
        name=entry.name,
        data=entry.data,
        meta=None if entry.meta is None else dict(entry.meta),
        creation_date=creation_date or now,
        modification_date=now,
    )


class CloudKeyStorage:
    """Named entries kept in one encrypted remote blob.

    The cache is unusable until ``retrieve_cloud_entries`` succeeds once.
    Every mutation runs a push cycle: serialize a candidate mapping, encrypt,
    push conditionally on the last known content hash, then adopt the
    decrypted server response as the new cache. A stale hash raises
    ``KeyknoxError`` (CONFLICT) and is never retried here; the caller has to
    re-sync first. A failed cycle leaves the cache and hash untouched.

    Thread-safety: public coroutines serialize on an ``asyncio.Lock``; the
    instance must not be shared across event loops or OS threads.
    """

    def __init__(self, keyknox_manager: KeyknoxManager) -> None:
        self.keyknox_manager = keyknox_manager
        self._cache: dict[str, CloudEntry] = {}
        self._decrypted_value: RemoteBlob | None = None
        self._lock = asyncio.Lock()

    @property
    def is_synced(self) -> bool:
        return self._decrypted_value is not None

    @property
    def content_hash(self) -> str | None:
        """Optimistic-lock token of the last server state seen, if any."""
        if self._decrypted_value is None:
            return None
        return self._decrypted_value.content_hash

    # ── Preconditions ────────────────────────────────

    def _require_synced(self) -> RemoteBlob:
        if self._decrypted_value is None:
            raise KeyknoxError.out_of_sync()
        return self._decrypted_value

    def _require_entry(self, name: str) -> CloudEntry:
        entry = self._cache.get(name)
        if entry is None:
            raise KeyknoxError.entry_doesnt_exist(name, EntryLocation.CLOUD)
        return entry

    # ── Network ──────────────────────────────────────

    def _adopt(self, decrypted: RemoteBlob) -> None:
        cache = deserialize(decrypted.value)
        self._cache = cache
        self._decrypted_value = decrypted

    async def _push_cycle(self, candidate: dict[str, CloudEntry]) -> None:
        current = self._require_synced()
        decrypted = await self.keyknox_manager.push_value(
            serialize(candidate), current.content_hash
        )
        self._adopt(decrypted)
        logger.info(
            "Pushed %d cloud entries (version %s)", len(self._cache), decrypted.version
        )

    async def retrieve_cloud_entries(self) -> None:
        """Pull the blob and rebuild the cache from it."""
        async with self._lock:
            decrypted = await self.keyknox_manager.pull_value()
            self._adopt(decrypted)
        logger.info(
            "Retrieved %d cloud entries (version %s)", len(self._cache), decrypted.version
        )

    # ── Mutations ────────────────────────────────────

    async def store_entries(self, entries: Sequence[NewEntry]) -> list[CloudEntry]:
        """Store new entries; fails for the whole batch if any name is taken."""
        for entry in entries:
            _check_meta(entry.name, entry.meta)
        async with self._lock:
            self._require_synced()
            candidate = dict(self._cache)
            for entry in entries:
                if entry.name in candidate:
                    raise KeyknoxError.entry_exists(entry.name, EntryLocation.CLOUD)
                candidate[entry.name] = _create_cloud_entry(entry)
            await self._push_cycle(candidate)
            return [self._require_entry(entry.name) for entry in entries]

    async def store_entry(self, name: str, data: bytes, meta: Meta | None = None) -> CloudEntry:
        [entry] = await self.store_entries([NewEntry(name=name, data=data, meta=meta)])
        return entry

    async def update_entry(self, name: str, data: bytes, meta: Meta | None = None) -> CloudEntry:
        """Replace data and meta of an existing entry, keeping its creation date."""
        _check_meta(name, meta)
        async with self._lock:
            self._require_synced()
            existing = self._require_entry(name)
            candidate = dict(self._cache)
            candidate[name] = _create_cloud_entry(
                NewEntry(name=name, data=data, meta=meta), existing.creation_date
            )
            await self._push_cycle(candidate)
            return self._require_entry(name)

    async def delete_entry(self, name: str) -> None:
        await self.delete_entries([name])

    async def delete_entries(self, names: Iterable[str]) -> None:
        """Delete entries; fails for the whole batch if any name is missing."""
        async with self._lock:
            self._require_synced()
            candidate = dict(self._cache)
            for name in names:
                if name not in candidate:
                    raise KeyknoxError.entry_doesnt_exist(name, EntryLocation.CLOUD)
                del candidate[name]
            await self._push_cycle(candidate)

    async def delete_all_entries(self) -> None:
        async with self._lock:
            self._require_synced()
            await self._push_cycle({})

    async def update_recipients(
        self,
        new_private_key: EllipticCurvePrivateKey | None = None,
        new_public_keys: Iterable[EllipticCurvePublicKey] | None = None,
    ) -> None:
        """Re-encrypt the stored entries for a new private key and/or recipient keys.

        Raises ValueError when neither is given.
        """
        if new_private_key is None and new_public_keys is None:
            raise ValueError("At least one of new_private_key or new_public_keys is required")
        async with self._lock:
            decrypted = await self.keyknox_manager.update_recipients(
                new_private_key=new_private_key, new_public_keys=new_public_keys
            )
            self._adopt(decrypted)

    # ── Reads ────────────────────────────────────────

    def retrieve_entry(self, name: str) -> CloudEntry:
        self._require_synced()
        return self._require_entry(name)

    def retrieve_all_entries(self) -> list[CloudEntry]:
        self._require_synced()
        return list(self._cache.values())

    def exists_entry(self, name: str) -> bool:
        self._require_synced()
        return name in self._cache
