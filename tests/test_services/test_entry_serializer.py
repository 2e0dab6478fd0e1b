"""Tests for the cloud entry codec."""

from __future__ import annotations

import json
from datetime import UTC, datetime

import pytest

from keyknox.exceptions import ErrorKind, KeyknoxError
from keyknox.models.entry import CloudEntry
from keyknox.services.entry_serializer import deserialize, serialize

CREATED = datetime(2024, 3, 1, 12, 0, 0, 123000, tzinfo=UTC)
MODIFIED = datetime(2024, 3, 2, 8, 30, 0, 456000, tzinfo=UTC)


def _entry(name: str = "alpha", meta: dict[str, str] | None = None) -> CloudEntry:
    return CloudEntry(
        name=name,
        data=b"\x00\x01secret",
        creation_date=CREATED,
        modification_date=MODIFIED,
        meta=meta,
    )


class TestSerialize:
    def test_empty_blob_is_empty_mapping(self) -> None:
        assert deserialize(b"") == {}

    def test_roundtrip_keeps_every_field(self) -> None:
        entries = {"alpha": _entry(meta={"kind": "card"}), "beta": _entry("beta")}
        assert deserialize(serialize(entries)) == entries

    def test_dates_are_epoch_milliseconds(self) -> None:
        doc = json.loads(serialize({"alpha": _entry()}))
        assert doc["alpha"]["creation_date"] == 1709294400123
        assert doc["alpha"]["modification_date"] == 1709368200456

    def test_missing_meta_is_omitted_not_empty(self) -> None:
        doc = json.loads(serialize({"alpha": _entry()}))
        assert "meta" not in doc["alpha"]
        assert deserialize(serialize({"alpha": _entry()}))["alpha"].meta is None

    def test_empty_meta_survives(self) -> None:
        assert deserialize(serialize({"alpha": _entry(meta={})}))["alpha"].meta == {}

    def test_output_is_deterministic(self) -> None:
        first = serialize({"b": _entry("b"), "a": _entry("a")})
        second = serialize({"a": _entry("a"), "b": _entry("b")})
        assert first == second


class TestDeserializeErrors:
    @pytest.mark.parametrize(
        "blob",
        [
            b"not json",
            b"[1, 2]",
            b'{"a": {"name": "a"}}',
            b'{"a": {"name": "a", "data": "!!", "creation_date": 0, "modification_date": 0}}',
            b"\xff\xfe",
            b'{"a": {"name": "a", "data": "", "creation_date": 1e300, "modification_date": 0}}',
        ],
    )
    def test_malformed_blob_is_crypto_invalid(self, blob: bytes) -> None:
        with pytest.raises(KeyknoxError) as excinfo:
            deserialize(blob)
        assert excinfo.value.kind == ErrorKind.CRYPTO_INVALID
