"""Codec between the cloud entry mapping and the single plaintext blob."""

from __future__ import annotations

import base64
import json
from typing import TYPE_CHECKING, Any

from keyknox.exceptions import KeyknoxError
from keyknox.models.entry import CloudEntry
from keyknox.services.datetime_service import from_epoch_ms, to_epoch_ms

if TYPE_CHECKING:
    from collections.abc import Mapping


def serialize(entries: Mapping[str, CloudEntry]) -> bytes:
    """Encode cloud entries as UTF-8 JSON keyed by entry name."""
    payload: dict[str, dict[str, Any]] = {}
    for name, entry in entries.items():
        item: dict[str, Any] = {
            "name": entry.name,
            "data": base64.b64encode(entry.data).decode("ascii"),
            "creation_date": to_epoch_ms(entry.creation_date),
            "modification_date": to_epoch_ms(entry.modification_date),
        }
        if entry.meta is not None:
            item["meta"] = dict(entry.meta)
        payload[name] = item
    return json.dumps(payload, sort_keys=True, separators=(",", ":")).encode("utf-8")


def deserialize(blob: bytes) -> dict[str, CloudEntry]:
    """Decode a blob produced by ``serialize``.

    An empty blob means the owner has nothing stored yet and yields an empty
    mapping. Anything else that is not a valid entry mapping raises
    ``KeyknoxError`` (CRYPTO_INVALID).
    """
    if not blob:
        return {}
    try:
        payload = json.loads(blob.decode("utf-8"))
        if not isinstance(payload, dict):
            raise TypeError("top-level value is not an object")
        entries: dict[str, CloudEntry] = {}
        for name, item in payload.items():
            meta = item.get("meta")
            entries[name] = CloudEntry(
                name=item["name"],
                data=base64.b64decode(item["data"], validate=True),
                creation_date=from_epoch_ms(item["creation_date"]),
                modification_date=from_epoch_ms(item["modification_date"]),
                meta=None if meta is None else {str(k): str(v) for k, v in meta.items()},
            )
    except (UnicodeDecodeError, ValueError, TypeError, KeyError, AttributeError) as exc:
        raise KeyknoxError.crypto_invalid(
            f"Cloud value is not a valid entry mapping: {exc}"
        ) from exc
    return entries

