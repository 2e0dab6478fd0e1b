"""Keyknox error type.

Convention:
- ``KeyknoxError``: every failure of the synchronization layer. The ``kind``
  attribute tells callers what happened; per-kind payload lives in the
  optional fields (``entry_name`` and ``location`` for entry preconditions,
  ``status`` and ``code`` for server responses).
- ``ValueError``: caller errors (bad arguments) that no retry can fix, such as
  rotating recipients without passing any new key.

Low-level transport exceptions raised by ``httpx`` (timeouts, connection
errors) are not wrapped and reach the caller unchanged.
"""

from __future__ import annotations

from enum import StrEnum


class ErrorKind(StrEnum):
    """Discriminant of ``KeyknoxError``."""

    OUT_OF_SYNC = "out_of_sync"
    ENTRY_EXISTS = "entry_exists"
    ENTRY_DOESNT_EXIST = "entry_doesnt_exist"
    CONFLICT = "conflict"
    CRYPTO_INVALID = "crypto_invalid"
    TRANSPORT = "transport"


class EntryLocation(StrEnum):
    """Which store an entry precondition was checked against."""

    CLOUD = "cloud"
    LOCAL = "local"


_LOCATION_LABELS = {EntryLocation.CLOUD: "Cloud entry", EntryLocation.LOCAL: "Key entry"}


class KeyknoxError(Exception):
    """Raised for every failure of the synchronization layer."""

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        *,
        entry_name: str | None = None,
        location: EntryLocation | None = None,
        status: int | None = None,
        code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.entry_name = entry_name
        self.location = location
        self.status = status
        self.code = code

    def __repr__(self) -> str:
        return f"KeyknoxError(kind={self.kind.value!r}, message={self.message!r})"

    @classmethod
    def out_of_sync(cls) -> KeyknoxError:
        return cls(
            ErrorKind.OUT_OF_SYNC,
            "CloudKeyStorage is out of sync; call retrieve_cloud_entries() first",
        )

    @classmethod
    def entry_exists(cls, name: str, location: EntryLocation) -> KeyknoxError:
        return cls(
            ErrorKind.ENTRY_EXISTS,
            f"{_LOCATION_LABELS[location]} '{name}' already exists",
            entry_name=name,
            location=location,
        )

    @classmethod
    def entry_doesnt_exist(cls, name: str, location: EntryLocation) -> KeyknoxError:
        return cls(
            ErrorKind.ENTRY_DOESNT_EXIST,
            f"{_LOCATION_LABELS[location]} '{name}' doesn't exist",
            entry_name=name,
            location=location,
        )

    @classmethod
    def conflict(cls, message: str | None = None, status: int | None = None) -> KeyknoxError:
        return cls(
            ErrorKind.CONFLICT,
            message or "Remote value was changed by another writer; sync and retry",
            status=status,
        )

    @classmethod
    def crypto_invalid(cls, message: str) -> KeyknoxError:
        return cls(ErrorKind.CRYPTO_INVALID, message)

    @classmethod
    def transport(
        cls, message: str, status: int | None = None, code: int | None = None
    ) -> KeyknoxError:
        return cls(ErrorKind.TRANSPORT, message, status=status, code=code)
