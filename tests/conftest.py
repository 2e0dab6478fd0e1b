"""Shared test fixtures for Keyknox sync."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import TYPE_CHECKING

import pytest
from fastapi import FastAPI, Header, Request
from fastapi.responses import JSONResponse
from httpx import ASGITransport, AsyncClient

from keyknox.filesystem.key_entry_storage import FileKeyEntryStorage
from keyknox.schemas.keyknox import HASH_HEADER, PREVIOUS_HASH_HEADER, KeyknoxPushRequest
from keyknox.services.cloud_storage import CloudKeyStorage
from keyknox.services.crypto_service import RecipientSet, generate_private_key
from keyknox.services.keyknox_client import KeyknoxClient, StaticTokenProvider
from keyknox.services.keyknox_manager import KeyknoxManager

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Callable, Iterable
    from pathlib import Path

    from cryptography.hazmat.primitives.asymmetric.ec import (
        EllipticCurvePrivateKey,
        EllipticCurvePublicKey,
    )

TEST_BASE_URL = "http://keyknox.test"
TEST_TOKEN = "token-alice"

CONFLICT_CODE = 50010


# ── Fake Keyknox server ──────────────────────────────


@dataclass
class StoredValue:
    """One owner's blob as the fake server keeps it (base64 fields)."""

    meta: str = ""
    value: str = ""
    version: int = 1
    content_hash: str = ""

    def body(self) -> dict[str, str]:
        return {"meta": self.meta, "value": self.value, "version": f"{self.version}.0"}

    def headers(self) -> dict[str, str]:
        return {HASH_HEADER: self.content_hash} if self.content_hash else {}


def create_keyknox_app() -> FastAPI:
    """In-memory Keyknox v1 server with per-token blobs and conditional writes.

    ``app.state.fail_next`` can be set to an HTTP status to fail the next
    request with it; ``app.state.requests`` records ``(method, path)`` pairs.
    """
    app = FastAPI()
    app.state.values = {}
    app.state.fail_next = None
    app.state.requests = []

    def _owner(authorization: str | None) -> str | None:
        if not authorization or not authorization.startswith("Virgil "):
            return None
        return authorization.removeprefix("Virgil ")

    def _error(status: int, code: int, message: str) -> JSONResponse:
        return JSONResponse(status_code=status, content={"code": code, "message": message})

    @app.middleware("http")
    async def record_and_fail(request: Request, call_next):  # type: ignore[no-untyped-def]
        app.state.requests.append((request.method, request.url.path))
        status = app.state.fail_next
        if status is not None:
            app.state.fail_next = None
            return _error(status, 10000, "Injected failure")
        return await call_next(request)

    @app.get("/keyknox/v1")
    async def pull(authorization: str | None = Header(default=None)) -> JSONResponse:
        owner = _owner(authorization)
        if owner is None:
            return _error(401, 20300, "Authorization header is missing or invalid")
        stored = app.state.values.setdefault(owner, StoredValue())
        return JSONResponse(content=stored.body(), headers=stored.headers())

    @app.put("/keyknox/v1")
    async def push(
        body: KeyknoxPushRequest,
        authorization: str | None = Header(default=None),
        previous_hash: str | None = Header(default=None, alias=PREVIOUS_HASH_HEADER),
    ) -> JSONResponse:
        owner = _owner(authorization)
        if owner is None:
            return _error(401, 20300, "Authorization header is missing or invalid")
        stored = app.state.values.setdefault(owner, StoredValue())
        if stored.content_hash and previous_hash != stored.content_hash:
            return _error(409, CONFLICT_CODE, "Keyknox value was modified concurrently")
        digest = hashlib.sha256(f"{body.meta}:{body.value}".encode()).hexdigest()
        updated = StoredValue(
            meta=body.meta,
            value=body.value,
            version=stored.version + 1,
            content_hash=digest,
        )
        app.state.values[owner] = updated
        return JSONResponse(content=updated.body(), headers=updated.headers())

    @app.post("/keyknox/v1/reset")
    async def reset(authorization: str | None = Header(default=None)) -> JSONResponse:
        owner = _owner(authorization)
        if owner is None:
            return _error(401, 20300, "Authorization header is missing or invalid")
        stored = app.state.values.setdefault(owner, StoredValue())
        cleared = StoredValue(version=stored.version + 1)
        app.state.values[owner] = cleared
        return JSONResponse(content=cleared.body(), headers=cleared.headers())

    return app


# ── Fixtures ─────────────────────────────────────────


@pytest.fixture
def keyknox_app() -> FastAPI:
    return create_keyknox_app()


@pytest.fixture
async def http_client(keyknox_app: FastAPI) -> AsyncGenerator[AsyncClient]:
    async with AsyncClient(
        transport=ASGITransport(app=keyknox_app), base_url=TEST_BASE_URL
    ) as client:
        yield client


@pytest.fixture
def private_key() -> EllipticCurvePrivateKey:
    return generate_private_key()


@pytest.fixture
def token_provider() -> StaticTokenProvider:
    return StaticTokenProvider(TEST_TOKEN)


@pytest.fixture
def keyknox_client(http_client: AsyncClient, token_provider: StaticTokenProvider) -> KeyknoxClient:
    return KeyknoxClient(token_provider, http_client=http_client)


@pytest.fixture
def manager(keyknox_client: KeyknoxClient, private_key: EllipticCurvePrivateKey) -> KeyknoxManager:
    return KeyknoxManager(keyknox_client, RecipientSet.create(private_key))


@pytest.fixture
def cloud_storage(manager: KeyknoxManager) -> CloudKeyStorage:
    return CloudKeyStorage(manager)


@pytest.fixture
def make_cloud_storage(
    http_client: AsyncClient,
) -> Callable[..., CloudKeyStorage]:
    """Build extra cloud storages against the same fake server."""

    def _make(
        private_key: EllipticCurvePrivateKey,
        public_keys: Iterable[EllipticCurvePublicKey] = (),
        token: str = TEST_TOKEN,
    ) -> CloudKeyStorage:
        client = KeyknoxClient(StaticTokenProvider(token), http_client=http_client)
        return CloudKeyStorage(KeyknoxManager(client, RecipientSet.create(private_key, public_keys)))

    return _make


@pytest.fixture
def file_storage(tmp_path: Path) -> FileKeyEntryStorage:
    return FileKeyEntryStorage(tmp_path / "entries")
