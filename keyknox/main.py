"""Object graph construction and logging setup for Keyknox sync."""

from __future__ import annotations

import logging
import sys
from typing import TYPE_CHECKING

from keyknox.filesystem.key_entry_storage import FileKeyEntryStorage
from keyknox.services.cloud_storage import CloudKeyStorage
from keyknox.services.crypto_service import RecipientSet
from keyknox.services.keyknox_client import KeyknoxClient
from keyknox.services.keyknox_manager import KeyknoxManager
from keyknox.services.sync_storage import SyncKeyStorage

if TYPE_CHECKING:
    from collections.abc import Iterable

    import httpx
    from cryptography.hazmat.primitives.asymmetric.ec import (
        EllipticCurvePrivateKey,
        EllipticCurvePublicKey,
    )

    from keyknox.config import Settings
    from keyknox.filesystem.key_entry_storage import KeyEntryStorage
    from keyknox.services.keyknox_client import AccessTokenProvider

logger = logging.getLogger(__name__)


def configure_logging(debug: bool) -> None:
    """Configure logging for applications embedding the library."""
    level = logging.DEBUG if debug else logging.INFO
    fmt = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
    logging.basicConfig(
        level=level,
        format=fmt,
        stream=sys.stdout,
        force=True,
    )
    # Quiet noisy libraries
    logging.getLogger("httpx").setLevel(logging.INFO if debug else logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def create_cloud_storage(
    settings: Settings,
    token_provider: AccessTokenProvider,
    private_key: EllipticCurvePrivateKey,
    public_keys: Iterable[EllipticCurvePublicKey] = (),
    http_client: httpx.AsyncClient | None = None,
) -> CloudKeyStorage:
    """Build a cloud storage for ``private_key``; its public key is always a recipient."""
    client = KeyknoxClient(
        token_provider,
        api_url=settings.api_url,
        http_client=http_client,
        timeout=settings.request_timeout,
    )
    recipients = RecipientSet.create(private_key, public_keys)
    logger.debug(
        "Keyknox client for %s, recipients %s", settings.api_url, recipients.recipient_ids
    )
    return CloudKeyStorage(KeyknoxManager(client, recipients))


def create_sync_storage(
    settings: Settings,
    token_provider: AccessTokenProvider,
    private_key: EllipticCurvePrivateKey,
    public_keys: Iterable[EllipticCurvePublicKey] = (),
    http_client: httpx.AsyncClient | None = None,
    key_entry_storage: KeyEntryStorage | None = None,
) -> SyncKeyStorage:
    """Build a sync storage; the local store defaults to files in ``key_entries_dir``."""
    cloud_storage = create_cloud_storage(
        settings, token_provider, private_key, public_keys, http_client
    )
    local = key_entry_storage or FileKeyEntryStorage(settings.key_entries_dir)
    return SyncKeyStorage(settings.identity, cloud_storage, local)
