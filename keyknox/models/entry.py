"""Entry data classes shared by the cloud cache, the codec and the sync engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from datetime import datetime

Meta = dict[str, str]


@dataclass(frozen=True)
class NewEntry:
    """An entry as supplied by the caller for store/update."""

    name: str
    data: bytes
    meta: Meta | None = None


@dataclass(frozen=True)
class CloudEntry:
    """An entry held by the cloud cache.

    Timestamps are UTC and truncated to milliseconds so they survive the
    epoch-millisecond encoding used on the wire.
    """

    name: str
    data: bytes
    creation_date: datetime
    modification_date: datetime
    meta: Meta | None = None


@dataclass(frozen=True)
class LocalEntry:
    """An entry held by the local key entry store."""

    name: str
    value: bytes
    meta: Meta = field(default_factory=dict)
