"""Tests for building storages from settings."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from keyknox.config import Settings
from keyknox.filesystem.key_entry_storage import FileKeyEntryStorage
from keyknox.main import configure_logging, create_cloud_storage, create_sync_storage
from keyknox.services.crypto_service import generate_private_key, key_id

if TYPE_CHECKING:
    from pathlib import Path

    import httpx
    from cryptography.hazmat.primitives.asymmetric.ec import EllipticCurvePrivateKey

    from keyknox.services.keyknox_client import StaticTokenProvider


class TestFactories:
    def test_cloud_storage_always_includes_owner(
        self, private_key: EllipticCurvePrivateKey, token_provider: StaticTokenProvider
    ) -> None:
        other = generate_private_key().public_key()
        storage = create_cloud_storage(
            Settings(_env_file=None), token_provider, private_key, [other]
        )
        recipients = storage.keyknox_manager.recipients
        assert recipients.recipient_ids == [key_id(private_key), key_id(other)]
        assert not storage.is_synced

    def test_owned_client_uses_settings(
        self, private_key: EllipticCurvePrivateKey, token_provider: StaticTokenProvider
    ) -> None:
        settings = Settings(
            _env_file=None, api_url="https://keyknox.example.com/", request_timeout=5
        )
        client = create_cloud_storage(settings, token_provider, private_key).keyknox_manager.client
        assert client.client.base_url.host == "keyknox.example.com"
        assert client.client.timeout.read == 5

    async def test_sync_storage_uses_entries_dir(
        self,
        tmp_path: Path,
        private_key: EllipticCurvePrivateKey,
        token_provider: StaticTokenProvider,
        http_client: httpx.AsyncClient,
    ) -> None:
        settings = Settings(_env_file=None, identity="alice", key_entries_dir=tmp_path / "keys")
        storage = create_sync_storage(
            settings, token_provider, private_key, http_client=http_client
        )
        assert isinstance(storage.local_storage.storage, FileKeyEntryStorage)
        assert storage.local_storage.identity == "alice"

        await storage.sync()
        await storage.store_entry("card", b"x")
        assert len(list((tmp_path / "keys").glob("*.json"))) == 1


class TestConfigureLogging:
    def test_debug_levels(self) -> None:
        root = logging.getLogger()
        handlers = root.handlers[:]
        level = root.level
        try:
            configure_logging(debug=True)
            assert root.level == logging.DEBUG
            configure_logging(debug=False)
            assert root.level == logging.INFO
            assert logging.getLogger("httpx").level == logging.WARNING
        finally:
            root.handlers[:] = handlers
            root.setLevel(level)
