"""HTTP client for the Keyknox v1 API: one conditional blob per owner."""

from __future__ import annotations

import base64
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

import httpx
from pydantic import ValidationError

from keyknox.exceptions import KeyknoxError
from keyknox.models.blob import RemoteBlob
from keyknox.schemas.keyknox import (
    HASH_HEADER,
    PREVIOUS_HASH_HEADER,
    KeyknoxErrorResponse,
    KeyknoxPushRequest,
    KeyknoxValueResponse,
)

if TYPE_CHECKING:
    from types import TracebackType

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.virgilsecurity.com"
DEFAULT_TIMEOUT = 30.0
AUTHORIZATION_PREFIX = "Virgil"
VALUE_PATH = "/keyknox/v1"
RESET_PATH = "/keyknox/v1/reset"


@runtime_checkable
class AccessTokenProvider(Protocol):
    """Supplies the bearer token for each Keyknox operation ("get", "put", "delete")."""

    async def get_token(self, operation: str) -> str:
        """Return a token valid for ``operation``."""
        ...


@dataclass
class StaticTokenProvider:
    """Token provider returning one pre-issued token for every operation."""

    token: str

    async def get_token(self, operation: str) -> str:
        return self.token


class KeyknoxClient:
    """Pull/push/reset the owner's blob.

    ``push`` is a conditional write: the server rejects it with HTTP 409 when
    ``previous_hash`` no longer matches its current content, which surfaces
    as ``KeyknoxError`` (CONFLICT). Other non-2xx responses raise
    ``KeyknoxError`` (TRANSPORT); httpx network errors propagate unchanged.
    """

    def __init__(
        self,
        token_provider: AccessTokenProvider,
        api_url: str | None = None,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self.token_provider = token_provider
        self._owns_client = http_client is None
        self.client = http_client or httpx.AsyncClient(
            base_url=(api_url or DEFAULT_API_URL).rstrip("/"),
            timeout=timeout,
        )

    async def aclose(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._owns_client:
            await self.client.aclose()

    async def __aenter__(self) -> KeyknoxClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def pull(self) -> RemoteBlob:
        """Fetch the current blob; an owner with no blob gets empty value and meta."""
        headers = await self._headers("get")
        resp = await self.client.get(VALUE_PATH, headers=headers)
        blob = self._to_blob(resp)
        logger.debug("Pulled keyknox value version %s", blob.version)
        return blob

    async def push(self, meta: bytes, value: bytes, previous_hash: str | None = None) -> RemoteBlob:
        """Replace the blob if the server still holds ``previous_hash``."""
        headers = await self._headers("put")
        if previous_hash:
            headers[PREVIOUS_HASH_HEADER] = previous_hash
        payload = KeyknoxPushRequest(
            meta=base64.b64encode(meta).decode("ascii"),
            value=base64.b64encode(value).decode("ascii"),
        )
        resp = await self.client.put(VALUE_PATH, json=payload.model_dump(), headers=headers)
        blob = self._to_blob(resp)
        logger.debug("Pushed keyknox value, now version %s", blob.version)
        return blob

    async def reset(self) -> RemoteBlob:
        """Irreversibly clear the owner's blob."""
        headers = await self._headers("delete")
        resp = await self.client.post(RESET_PATH, headers=headers)
        blob = self._to_blob(resp)
        logger.info("Reset keyknox value, now version %s", blob.version)
        return blob

    async def _headers(self, operation: str) -> dict[str, str]:
        token = await self.token_provider.get_token(operation)
        return {"Authorization": f"{AUTHORIZATION_PREFIX} {token}"}

    @staticmethod
    def _raise_for_status(resp: httpx.Response) -> None:
        if resp.is_success:
            return
        try:
            error = KeyknoxErrorResponse.model_validate(resp.json())
        except (ValueError, ValidationError):
            error = KeyknoxErrorResponse()
        message = error.message or f"Keyknox request failed with HTTP {resp.status_code}"
        if resp.status_code == httpx.codes.CONFLICT:
            raise KeyknoxError.conflict(error.message, status=resp.status_code)
        raise KeyknoxError.transport(message, status=resp.status_code, code=error.code)

    @classmethod
    def _to_blob(cls, resp: httpx.Response) -> RemoteBlob:
        cls._raise_for_status(resp)
        try:
            data = KeyknoxValueResponse.model_validate(resp.json())
        except (ValueError, ValidationError) as exc:
            raise KeyknoxError.transport(
                f"Malformed keyknox response: {exc}", status=resp.status_code
            ) from exc
        return RemoteBlob(
            meta=base64.b64decode(data.meta),
            value=base64.b64decode(data.value),
            version=data.version,
            content_hash=resp.headers.get(HASH_HEADER, ""),
        )


async def reset_all_entries(
    token_provider: AccessTokenProvider,
    api_url: str | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> RemoteBlob:
    """Irreversibly delete everything the owner has stored, without syncing first."""
    async with KeyknoxClient(token_provider, api_url=api_url, http_client=http_client) as client:
        return await client.reset()
