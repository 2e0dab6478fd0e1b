"""The remote blob: one versioned record per owner."""

from __future__ import annotations

from dataclasses import dataclass, replace


@dataclass(frozen=True)
class RemoteBlob:
    """Single record stored by the Keyknox service.

    ``value`` and ``meta`` hold ciphertext and detached encryption metadata as
    they travel over the wire, and plaintext (with the untouched metadata)
    once decrypted. ``content_hash`` is the optimistic-lock token for the
    next conditional write.
    """

    meta: bytes
    value: bytes
    version: str
    content_hash: str

    @property
    def is_empty(self) -> bool:
        """True when the owner has no stored content yet."""
        return not self.meta and not self.value

    def with_value(self, value: bytes) -> RemoteBlob:
        return replace(self, value=value)
