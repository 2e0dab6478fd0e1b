"""Keyknox v1 wire schemas."""

from __future__ import annotations

import base64
import binascii

from pydantic import BaseModel, Field, field_validator

HASH_HEADER = "Virgil-Keyknox-Hash"
PREVIOUS_HASH_HEADER = "Virgil-Keyknox-Previous-Hash"


class KeyknoxPushRequest(BaseModel):
    """Body of ``PUT /keyknox/v1``; both fields base64."""

    meta: str
    value: str


class KeyknoxValueResponse(BaseModel):
    """Body returned by every Keyknox v1 endpoint."""

    meta: str = ""
    value: str = ""
    version: str = Field(default="1.0")

    @field_validator("meta", "value")
    @classmethod
    def check_base64(cls, v: str) -> str:
        try:
            base64.b64decode(v, validate=True)
        except binascii.Error as exc:
            raise ValueError("must be base64") from exc
        return v

    @field_validator("version", mode="before")
    @classmethod
    def coerce_version(cls, v: object) -> str:
        return str(v)


class KeyknoxErrorResponse(BaseModel):
    """Error body returned by the service."""

    code: int | None = None
    message: str | None = None
