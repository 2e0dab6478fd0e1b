"""Sign-then-encrypt for the Keyknox blob with detached metadata.

Keys are P-256 (ECDSA for signatures, ECDH for key agreement). A value is
signed by the owner, encrypted once with a random AES-256-GCM content key,
and the content key is wrapped for every recipient public key with an
ephemeral ECDH exchange. Everything needed to decrypt except the ciphertext
itself travels in the JSON metadata.
"""

from __future__ import annotations

import base64
import hashlib
import json
import os
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from cryptography.exceptions import InvalidSignature, InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.ec import (
    SECP256R1,
    EllipticCurvePrivateKey,
    EllipticCurvePublicKey,
)
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from cryptography.hazmat.primitives.serialization import (
    Encoding,
    NoEncryption,
    PrivateFormat,
    PublicFormat,
    load_pem_private_key,
    load_pem_public_key,
)

from keyknox.exceptions import KeyknoxError

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence
    from pathlib import Path

METADATA_VERSION = 1
_WRAP_INFO = b"keyknox-recipient-key"
_SIGNATURE_AAD = b"keyknox-signature"
_NONCE_SIZE = 12


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _unb64(value: Any) -> bytes:
    if not isinstance(value, str):
        raise TypeError("expected a base64 string")
    return base64.b64decode(value, validate=True)


# ── Keys ─────────────────────────────────────────────


def generate_private_key() -> EllipticCurvePrivateKey:
    """Generate a new P-256 private key."""
    return ec.generate_private_key(SECP256R1())


def key_id(key: EllipticCurvePublicKey | EllipticCurvePrivateKey) -> str:
    """Short stable identifier of a key pair: first 8 bytes of SHA-256 over the DER public key."""
    if isinstance(key, EllipticCurvePrivateKey):
        key = key.public_key()
    der = key.public_bytes(Encoding.DER, PublicFormat.SubjectPublicKeyInfo)
    return hashlib.sha256(der).digest()[:8].hex()


def export_private_key(private_key: EllipticCurvePrivateKey) -> bytes:
    return private_key.private_bytes(Encoding.PEM, PrivateFormat.PKCS8, NoEncryption())


def export_public_key(public_key: EllipticCurvePublicKey) -> bytes:
    return public_key.public_bytes(Encoding.PEM, PublicFormat.SubjectPublicKeyInfo)


def load_private_key(pem: bytes) -> EllipticCurvePrivateKey:
    """Load a PEM private key. Raises ValueError for anything but a P-256 key."""
    key = load_pem_private_key(pem, password=None)
    if not isinstance(key, EllipticCurvePrivateKey) or key.curve.name != SECP256R1.name:
        raise ValueError("Private key must be an unencrypted P-256 key")
    return key


def load_public_key(pem: bytes) -> EllipticCurvePublicKey:
    """Load a PEM public key. Raises ValueError for anything but a P-256 key."""
    key = load_pem_public_key(pem)
    if not isinstance(key, EllipticCurvePublicKey) or key.curve.name != SECP256R1.name:
        raise ValueError("Public key must be a P-256 key")
    return key


def save_private_key(private_key: EllipticCurvePrivateKey, path: Path) -> None:
    """Write a private key as PEM, readable by the owner only."""
    path.write_bytes(export_private_key(private_key))
    path.chmod(0o600)


@dataclass(frozen=True)
class RecipientSet:
    """The owner's private key plus every public key the blob is encrypted for.

    The owner's own public key is always a member, so a set is either "self"
    or "self + explicit public keys". Signatures are accepted from any member.
    """

    private_key: EllipticCurvePrivateKey
    public_keys: tuple[EllipticCurvePublicKey, ...]

    @classmethod
    def create(
        cls,
        private_key: EllipticCurvePrivateKey,
        public_keys: Iterable[EllipticCurvePublicKey] = (),
    ) -> RecipientSet:
        members: dict[str, EllipticCurvePublicKey] = {key_id(private_key): private_key.public_key()}
        for public_key in public_keys:
            members.setdefault(key_id(public_key), public_key)
        return cls(private_key=private_key, public_keys=tuple(members.values()))

    @property
    def owner_id(self) -> str:
        return key_id(self.private_key)

    @property
    def recipient_ids(self) -> list[str]:
        return [key_id(k) for k in self.public_keys]

    def rotated(
        self,
        new_private_key: EllipticCurvePrivateKey | None = None,
        new_public_keys: Iterable[EllipticCurvePublicKey] | None = None,
    ) -> RecipientSet:
        """Return the set after replacing the owner key and/or the other recipients.

        Raises ValueError when neither replacement is given.
        """
        if new_private_key is None and new_public_keys is None:
            raise ValueError("At least one of new_private_key or new_public_keys is required")
        private_key = new_private_key if new_private_key is not None else self.private_key
        if new_public_keys is None:
            owner_id = self.owner_id
            new_public_keys = [k for k in self.public_keys if key_id(k) != owner_id]
        return RecipientSet.create(private_key, new_public_keys)


# ── Encrypt / decrypt ────────────────────────────────


def _wrap_key(content_key: bytes, recipient: EllipticCurvePublicKey) -> dict[str, str]:
    recipient_id = key_id(recipient)
    ephemeral = ec.generate_private_key(SECP256R1())
    shared = ephemeral.exchange(ec.ECDH(), recipient)
    kek = HKDF(
        algorithm=hashes.SHA256(), length=32, salt=None, info=_WRAP_INFO
    ).derive(shared)
    nonce = os.urandom(_NONCE_SIZE)
    wrapped = AESGCM(kek).encrypt(nonce, content_key, recipient_id.encode("ascii"))
    return {
        "id": recipient_id,
        "epk": _b64(
            ephemeral.public_key().public_bytes(Encoding.X962, PublicFormat.UncompressedPoint)
        ),
        "nonce": _b64(nonce),
        "key": _b64(wrapped),
    }


def _unwrap_key(private_key: EllipticCurvePrivateKey, recipient: dict[str, Any]) -> bytes:
    ephemeral = EllipticCurvePublicKey.from_encoded_point(SECP256R1(), _unb64(recipient["epk"]))
    shared = private_key.exchange(ec.ECDH(), ephemeral)
    kek = HKDF(
        algorithm=hashes.SHA256(), length=32, salt=None, info=_WRAP_INFO
    ).derive(shared)
    return AESGCM(kek).decrypt(
        _unb64(recipient["nonce"]), _unb64(recipient["key"]), recipient["id"].encode("ascii")
    )


def encrypt(
    plaintext: bytes,
    private_key: EllipticCurvePrivateKey,
    public_keys: Sequence[EllipticCurvePublicKey],
) -> tuple[bytes, bytes]:
    """Sign ``plaintext`` with ``private_key`` and encrypt it for ``public_keys``.

    Returns ``(ciphertext, metadata)``.
    """
    if not public_keys:
        raise ValueError("At least one recipient public key is required")
    signer_id = key_id(private_key)
    signature = private_key.sign(plaintext, ec.ECDSA(hashes.SHA256()))

    content_key = AESGCM.generate_key(bit_length=256)
    aead = AESGCM(content_key)
    nonce = os.urandom(_NONCE_SIZE)
    signature_nonce = os.urandom(_NONCE_SIZE)
    ciphertext = aead.encrypt(nonce, plaintext, signer_id.encode("ascii"))

    metadata = {
        "version": METADATA_VERSION,
        "signer": signer_id,
        "nonce": _b64(nonce),
        "signature_nonce": _b64(signature_nonce),
        "signature": _b64(aead.encrypt(signature_nonce, signature, _SIGNATURE_AAD)),
        "recipients": [_wrap_key(content_key, k) for k in public_keys],
    }
    return ciphertext, json.dumps(metadata, sort_keys=True).encode("utf-8")


def _parse_metadata(metadata: bytes) -> dict[str, Any]:
    try:
        header = json.loads(metadata.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as exc:
        raise KeyknoxError.crypto_invalid("Encryption metadata is not valid JSON") from exc
    if not isinstance(header, dict) or header.get("version") != METADATA_VERSION:
        raise KeyknoxError.crypto_invalid("Unsupported encryption metadata")
    if not isinstance(header.get("recipients"), list) or not isinstance(header.get("signer"), str):
        raise KeyknoxError.crypto_invalid("Encryption metadata is incomplete")
    return header


def decrypt(
    ciphertext: bytes,
    metadata: bytes,
    private_key: EllipticCurvePrivateKey,
    public_keys: Sequence[EllipticCurvePublicKey],
) -> bytes:
    """Decrypt a value produced by ``encrypt`` and verify its signature.

    An empty ciphertext together with empty metadata is the "nothing stored
    yet" state and decrypts to ``b""``. Every other failure (half-empty pair,
    tampering, ``private_key`` not among the recipients, signer outside
    ``public_keys``) raises ``KeyknoxError`` (CRYPTO_INVALID).
    """
    if not ciphertext and not metadata:
        return b""
    if not ciphertext or not metadata:
        raise KeyknoxError.crypto_invalid(
            "Encrypted value is invalid: value and meta must be both empty or both present"
        )

    header = _parse_metadata(metadata)
    own_id = key_id(private_key)
    recipient = next(
        (r for r in header["recipients"] if isinstance(r, dict) and r.get("id") == own_id),
        None,
    )
    if recipient is None:
        raise KeyknoxError.crypto_invalid(
            f"Key {own_id} is not among the recipients of this value"
        )

    signer_id: str = header["signer"]
    try:
        content_key = _unwrap_key(private_key, recipient)
        aead = AESGCM(content_key)
        plaintext = aead.decrypt(
            _unb64(header["nonce"]), ciphertext, signer_id.encode("ascii")
        )
        signature = aead.decrypt(
            _unb64(header["signature_nonce"]), _unb64(header["signature"]), _SIGNATURE_AAD
        )
    except InvalidTag as exc:
        raise KeyknoxError.crypto_invalid("Encrypted value failed authentication") from exc
    except (KeyError, TypeError, ValueError) as exc:
        raise KeyknoxError.crypto_invalid(f"Encryption metadata is malformed: {exc}") from exc

    signers = {key_id(k): k for k in public_keys}
    signer = signers.get(signer_id)
    if signer is None:
        raise KeyknoxError.crypto_invalid(
            f"Value is signed by key {signer_id}, which is not a trusted public key"
        )
    try:
        signer.verify(signature, plaintext, ec.ECDSA(hashes.SHA256()))
    except InvalidSignature as exc:
        raise KeyknoxError.crypto_invalid("Signature verification failed") from exc
    return plaintext
