"""Conversion between cloud entries and local key entries.

The local store has no timestamp fields of its own, so the cloud timestamps
travel in two reserved meta keys as decimal epoch milliseconds.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from keyknox.models.entry import LocalEntry
from keyknox.services.datetime_service import from_epoch_ms, parse_datetime, to_epoch_ms

if TYPE_CHECKING:
    from datetime import datetime

    from keyknox.models.entry import CloudEntry, Meta

logger = logging.getLogger(__name__)

CREATION_DATE_KEY = "k_cda"
MODIFICATION_DATE_KEY = "k_mda"
RESERVED_META_KEYS = frozenset({CREATION_DATE_KEY, MODIFICATION_DATE_KEY})


@dataclass(frozen=True)
class EntryDates:
    creation_date: datetime
    modification_date: datetime


def create_local_entry(cloud_entry: CloudEntry) -> LocalEntry:
    """Build the local representation of a cloud entry."""
    meta: Meta = dict(cloud_entry.meta or {})
    meta[CREATION_DATE_KEY] = str(to_epoch_ms(cloud_entry.creation_date))
    meta[MODIFICATION_DATE_KEY] = str(to_epoch_ms(cloud_entry.modification_date))
    return LocalEntry(name=cloud_entry.name, value=cloud_entry.data, meta=meta)


def extract_dates(local_entry: LocalEntry) -> EntryDates | None:
    """Read the cloud timestamps stored on a local entry.

    Returns None when the entry carries no (or unreadable) timestamp meta,
    e.g. because it was written to the store by something other than sync.
    """
    raw_created = local_entry.meta.get(CREATION_DATE_KEY)
    raw_modified = local_entry.meta.get(MODIFICATION_DATE_KEY)
    if raw_created is None or raw_modified is None:
        return None
    try:
        return EntryDates(
            creation_date=parse_datetime(raw_created),
            modification_date=parse_datetime(raw_modified),
        )
    except ValueError:
        logger.warning("Ignoring unreadable timestamps on key entry %s", local_entry.name)
        return None


def modification_date_of(local_entry: LocalEntry) -> datetime:
    """Modification date used for reconciliation; missing dates sort oldest."""
    dates = extract_dates(local_entry)
    if dates is None:
        return from_epoch_ms(0)
    return dates.modification_date


def user_meta(local_entry: LocalEntry) -> Meta:
    """Meta of a local entry without the reserved timestamp keys."""
    return {k: v for k, v in local_entry.meta.items() if k not in RESERVED_META_KEYS}
