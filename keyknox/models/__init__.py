"""Data models for keyknox-sync."""

from keyknox.models.blob import RemoteBlob
from keyknox.models.entry import CloudEntry, LocalEntry, Meta, NewEntry

__all__ = [
    "CloudEntry",
    "LocalEntry",
    "Meta",
    "NewEntry",
    "RemoteBlob",
]
