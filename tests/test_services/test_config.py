"""Tests for library configuration."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from keyknox.config import Settings
from keyknox.services.keyknox_client import DEFAULT_API_URL, DEFAULT_TIMEOUT


class TestSettings:
    def test_default_settings(self) -> None:
        s = Settings(_env_file=None)
        assert s.api_url == DEFAULT_API_URL
        assert s.request_timeout == DEFAULT_TIMEOUT
        assert s.identity == "default"
        assert s.debug is False

    def test_reads_prefixed_environment(
        self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path
    ) -> None:
        monkeypatch.setenv("KEYKNOX_API_URL", "https://keyknox.example.com")
        monkeypatch.setenv("KEYKNOX_IDENTITY", "alice")
        monkeypatch.setenv("KEYKNOX_KEY_ENTRIES_DIR", str(tmp_path))
        monkeypatch.setenv("KEYKNOX_DEBUG", "true")
        s = Settings(_env_file=None)
        assert s.api_url == "https://keyknox.example.com"
        assert s.identity == "alice"
        assert s.key_entries_dir == tmp_path
        assert s.debug is True

    def test_unprefixed_environment_is_ignored(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("IDENTITY", "bob")
        assert Settings(_env_file=None).identity == "default"

    def test_timeout_must_be_positive(self) -> None:
        with pytest.raises(ValidationError):
            Settings(_env_file=None, request_timeout=0)

    def test_custom_settings(self) -> None:
        s = Settings(_env_file=None, identity="carol", key_entries_dir=Path("/tmp/keys"))
        assert s.identity == "carol"
        assert s.key_entries_dir == Path("/tmp/keys")
