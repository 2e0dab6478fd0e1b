"""Sync key storage: keeps the local key entry store in step with the cloud cache."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from keyknox.exceptions import EntryLocation, KeyknoxError
from keyknox.filesystem.storage_wrapper import KeyEntryStorageWrapper
from keyknox.models.entry import NewEntry
from keyknox.services.entry_utils import create_local_entry, modification_date_of

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping, Sequence

    from cryptography.hazmat.primitives.asymmetric.ec import (
        EllipticCurvePrivateKey,
        EllipticCurvePublicKey,
    )

    from keyknox.filesystem.key_entry_storage import KeyEntryStorage
    from keyknox.models.entry import CloudEntry, LocalEntry, Meta
    from keyknox.services.cloud_storage import CloudKeyStorage

logger = logging.getLogger(__name__)


@dataclass
class SyncPlan:
    """Local changes needed to match the cloud."""

    to_store: list[str] = field(default_factory=list)
    to_update: list[str] = field(default_factory=list)
    to_delete: list[str] = field(default_factory=list)
    no_change: list[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.to_store or self.to_update or self.to_delete)


def compute_sync_plan(
    cloud_entries: Mapping[str, CloudEntry],
    local_entries: Mapping[str, LocalEntry],
) -> SyncPlan:
    """Compare cloud and local entries by name and modification date.

    The cloud decides which names exist. A local copy is refreshed only when
    it is strictly older than the cloud entry; equal dates keep the local copy.
    Local entries without timestamp meta count as oldest.
    """
    plan = SyncPlan()
    for name in sorted(set(cloud_entries) | set(local_entries)):
        cloud_entry = cloud_entries.get(name)
        local_entry = local_entries.get(name)
        if cloud_entry is None:
            plan.to_delete.append(name)
        elif local_entry is None:
            plan.to_store.append(name)
        elif modification_date_of(local_entry) < cloud_entry.modification_date:
            plan.to_update.append(name)
        else:
            plan.no_change.append(name)
    return plan


class SyncKeyStorage:
    """CRUD over both the cloud cache and the local key entry store.

    Reads are served from the local store and work offline. Writes check the
    local store first to fail fast, then go through the cloud, then mirror
    the server-confirmed entries locally. The local pre-check is best effort:
    another writer can still race it, in which case the cloud check decides.
    """

    def __init__(
        self,
        identity: str,
        cloud_storage: CloudKeyStorage,
        key_entry_storage: KeyEntryStorage,
    ) -> None:
        self.cloud_storage = cloud_storage
        self.local_storage = KeyEntryStorageWrapper(identity, key_entry_storage)

    # ── Preconditions ────────────────────────────────

    async def _ensure_absent(self, names: Iterable[str]) -> None:
        names = list(names)
        exists = await asyncio.gather(*(self.local_storage.exists(n) for n in names))
        for name, found in zip(names, exists, strict=True):
            if found:
                raise KeyknoxError.entry_exists(name, EntryLocation.LOCAL)

    async def _ensure_present(self, names: Iterable[str]) -> None:
        names = list(names)
        exists = await asyncio.gather(*(self.local_storage.exists(n) for n in names))
        for name, found in zip(names, exists, strict=True):
            if not found:
                raise KeyknoxError.entry_doesnt_exist(name, EntryLocation.LOCAL)

    # ── Sync ─────────────────────────────────────────

    async def sync(self) -> SyncPlan:
        """Pull the cloud and make the local store match it; returns the applied plan."""
        await self.cloud_storage.retrieve_cloud_entries()
        cloud_entries = {e.name: e for e in self.cloud_storage.retrieve_all_entries()}
        local_entries = {e.name: e for e in await self.local_storage.list()}

        plan = compute_sync_plan(cloud_entries, local_entries)
        await self._apply(plan, cloud_entries)
        logger.info(
            "Sync complete: %d stored, %d updated, %d deleted, %d unchanged",
            len(plan.to_store),
            len(plan.to_update),
            len(plan.to_delete),
            len(plan.no_change),
        )
        return plan

    async def _store_local(self, cloud_entry: CloudEntry) -> LocalEntry:
        local = create_local_entry(cloud_entry)
        return await self.local_storage.save(local.name, local.value, local.meta)

    async def _update_local(self, cloud_entry: CloudEntry) -> LocalEntry:
        local = create_local_entry(cloud_entry)
        return await self.local_storage.update(local.name, local.value, local.meta)

    async def _apply(self, plan: SyncPlan, cloud_entries: Mapping[str, CloudEntry]) -> None:
        for name in plan.to_delete:
            logger.debug("Removing local key entry %s (not in cloud)", name)
        await asyncio.gather(
            *(self.local_storage.remove(name) for name in plan.to_delete),
            *(self._update_local(cloud_entries[name]) for name in plan.to_update),
            *(self._store_local(cloud_entries[name]) for name in plan.to_store),
        )

    # ── Writes ───────────────────────────────────────

    async def store_entries(self, entries: Sequence[NewEntry]) -> list[LocalEntry]:
        await self._ensure_absent(e.name for e in entries)
        cloud_entries = await self.cloud_storage.store_entries(entries)
        return list(await asyncio.gather(*(self._store_local(e) for e in cloud_entries)))

    async def store_entry(self, name: str, data: bytes, meta: Meta | None = None) -> LocalEntry:
        [entry] = await self.store_entries([NewEntry(name=name, data=data, meta=meta)])
        return entry

    async def update_entry(self, name: str, data: bytes, meta: Meta | None = None) -> LocalEntry:
        await self._ensure_present([name])
        cloud_entry = await self.cloud_storage.update_entry(name, data, meta)
        return await self._update_local(cloud_entry)

    async def delete_entry(self, name: str) -> None:
        await self.delete_entries([name])

    async def delete_entries(self, names: Iterable[str]) -> None:
        """Delete locally, then in the cloud.

        If the cloud half fails, the entries are already gone locally while the
        cloud still holds them; the next ``sync`` brings them back.
        """
        names = list(names)
        await self._ensure_present(names)
        await asyncio.gather(*(self.local_storage.remove(n) for n in names))
        await self.cloud_storage.delete_entries(names)

    async def delete_all_entries(self) -> None:
        await self.local_storage.clear()
        await self.cloud_storage.delete_all_entries()

    async def update_recipients(
        self,
        new_private_key: EllipticCurvePrivateKey | None = None,
        new_public_keys: Iterable[EllipticCurvePublicKey] | None = None,
    ) -> None:
        """Re-encrypt the cloud value for new keys; local entries are untouched."""
        await self.cloud_storage.update_recipients(
            new_private_key=new_private_key, new_public_keys=new_public_keys
        )

    # ── Reads ────────────────────────────────────────

    async def retrieve_entry(self, name: str) -> LocalEntry:
        entry = await self.local_storage.load(name)
        if entry is None:
            raise KeyknoxError.entry_doesnt_exist(name, EntryLocation.LOCAL)
        return entry

    async def retrieve_all_entries(self) -> list[LocalEntry]:
        return await self.local_storage.list()

    async def exists_entry(self, name: str) -> bool:
        return await self.local_storage.exists(name)
