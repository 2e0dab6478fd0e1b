"""Encrypted access to the owner's blob: the client and the crypto in one place."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from keyknox.services import crypto_service

if TYPE_CHECKING:
    from collections.abc import Iterable

    from cryptography.hazmat.primitives.asymmetric.ec import (
        EllipticCurvePrivateKey,
        EllipticCurvePublicKey,
    )

    from keyknox.models.blob import RemoteBlob
    from keyknox.services.crypto_service import RecipientSet
    from keyknox.services.keyknox_client import KeyknoxClient

logger = logging.getLogger(__name__)


class KeyknoxManager:
    """Pull, push, reset and re-encrypt the blob for the current recipient set.

    Every returned ``RemoteBlob`` carries plaintext in ``value``: server
    responses are decrypted before they leave this class.
    """

    def __init__(self, client: KeyknoxClient, recipients: RecipientSet) -> None:
        self.client = client
        self._recipients = recipients

    @property
    def recipients(self) -> RecipientSet:
        return self._recipients

    @property
    def private_key(self) -> EllipticCurvePrivateKey:
        return self._recipients.private_key

    @property
    def public_keys(self) -> tuple[EllipticCurvePublicKey, ...]:
        return self._recipients.public_keys

    def _decrypt(self, blob: RemoteBlob, recipients: RecipientSet | None = None) -> RemoteBlob:
        recipients = recipients or self._recipients
        plaintext = crypto_service.decrypt(
            blob.value, blob.meta, recipients.private_key, recipients.public_keys
        )
        return blob.with_value(plaintext)

    async def _push(
        self, value: bytes, previous_hash: str | None, recipients: RecipientSet
    ) -> RemoteBlob:
        ciphertext, metadata = crypto_service.encrypt(
            value, recipients.private_key, recipients.public_keys
        )
        encrypted = await self.client.push(metadata, ciphertext, previous_hash)
        return self._decrypt(encrypted, recipients)

    async def pull_value(self) -> RemoteBlob:
        return self._decrypt(await self.client.pull())

    async def push_value(self, value: bytes, previous_hash: str | None = None) -> RemoteBlob:
        return await self._push(value, previous_hash, self._recipients)

    async def reset_value(self) -> RemoteBlob:
        return await self.client.reset()

    async def update_value(
        self,
        value: bytes,
        previous_hash: str | None,
        new_private_key: EllipticCurvePrivateKey | None = None,
        new_public_keys: Iterable[EllipticCurvePublicKey] | None = None,
    ) -> RemoteBlob:
        """Push ``value``, re-keying in the same write when new keys are given."""
        if new_private_key is None and new_public_keys is None:
            return await self.push_value(value, previous_hash)
        rotated = self._recipients.rotated(new_private_key, new_public_keys)
        decrypted = await self._push(value, previous_hash, rotated)
        self._recipients = rotated
        return decrypted

    async def update_recipients(
        self,
        new_private_key: EllipticCurvePrivateKey | None = None,
        new_public_keys: Iterable[EllipticCurvePublicKey] | None = None,
    ) -> RemoteBlob:
        """Re-encrypt the current blob for a new key set.

        The new keys replace the current ones only after the server accepted
        the re-encrypted value. An owner with nothing stored switches keys
        without a write.
        """
        rotated = self._recipients.rotated(new_private_key, new_public_keys)
        current = await self.pull_value()
        if current.is_empty:
            self._recipients = rotated
            logger.info("Switched to recipients %s (no stored value)", rotated.recipient_ids)
            return current
        decrypted = await self._push(current.value, current.content_hash, rotated)
        self._recipients = rotated
        logger.info(
            "Re-encrypted keyknox value version %s for recipients %s",
            decrypted.version,
            rotated.recipient_ids,
        )
        return decrypted
