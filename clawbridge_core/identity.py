"""Device identity and signed connect assertions.

The gateway authenticates a device by an Ed25519 signature over a canonical,
pipe-delimited string bound to one connection attempt:

    v1|<fingerprint>|<client id>|<client mode>|<role>|<scopes>|<signed at ms>|<token>
    v2|...same fields...|<nonce>

``v2`` is used whenever the server issued a challenge nonce. The fingerprint
is the hex SHA-256 of the raw 32-byte public key.

Key material is supplied by the caller; this module never persists keys.
"""

from __future__ import annotations

import base64
import hashlib
import time
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ed25519

from .errors import IdentityKeyError


def base64url_encode(data: bytes) -> str:
    """Encode bytes as unpadded base64url."""
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


@dataclass(frozen=True)
class DeviceIdentity:
    """Long-lived Ed25519 device keypair.

    Attributes:
        private_key: Signing key
        public_key_bytes: Raw 32-byte public key
    """

    private_key: ed25519.Ed25519PrivateKey
    public_key_bytes: bytes

    @property
    def fingerprint(self) -> str:
        """Hex SHA-256 of the raw public key."""
        return hashlib.sha256(self.public_key_bytes).hexdigest()

    @classmethod
    def from_private_key(cls, private_key: ed25519.Ed25519PrivateKey) -> DeviceIdentity:
        public_raw = private_key.public_key().public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )
        return cls(private_key=private_key, public_key_bytes=public_raw)

    @classmethod
    def from_hex(cls, public_key_hex: str, private_key_hex: str) -> DeviceIdentity:
        """Load an identity from stored hex strings.

        Args:
            public_key_hex: Raw 32-byte Ed25519 public key, hex encoded
            private_key_hex: PKCS#8 DER private key, hex encoded

        Raises:
            IdentityKeyError: If either value does not decode to an Ed25519 key
        """
        try:
            public_raw = bytes.fromhex(public_key_hex)
            private_der = bytes.fromhex(private_key_hex)
        except (TypeError, ValueError) as err:
            raise IdentityKeyError("Device key material is not valid hex") from err

        if len(public_raw) != 32:
            raise IdentityKeyError(
                f"Device public key must be 32 bytes, got {len(public_raw)}"
            )

        try:
            private_key = serialization.load_der_private_key(private_der, password=None)
        except (TypeError, ValueError, UnsupportedAlgorithm) as err:
            raise IdentityKeyError("Device private key is not a PKCS#8 DER key") from err

        if not isinstance(private_key, ed25519.Ed25519PrivateKey):
            raise IdentityKeyError("Device private key is not an Ed25519 key")

        return cls(private_key=private_key, public_key_bytes=public_raw)

    @classmethod
    def generate(cls) -> DeviceIdentity:
        """Create a fresh identity (tests and first-run bootstrap)."""
        return cls.from_private_key(ed25519.Ed25519PrivateKey.generate())

    def sign(self, data: bytes) -> bytes:
        return self.private_key.sign(data)


def build_device_auth_payload(
    *,
    device_id: str,
    client_id: str,
    client_mode: str,
    role: str,
    scopes: Sequence[str],
    signed_at_ms: int,
    token: str | None = None,
    nonce: str | None = None,
) -> str:
    """Build the canonical string signed for a connect attempt."""
    version = "v2" if nonce else "v1"
    parts = [
        version,
        device_id,
        client_id,
        client_mode,
        role,
        ",".join(scopes),
        str(signed_at_ms),
        token or "",
    ]
    if version == "v2":
        parts.append(nonce or "")
    return "|".join(parts)


def build_device_assertion(
    identity: DeviceIdentity,
    *,
    client_id: str,
    client_mode: str,
    role: str,
    scopes: Sequence[str],
    token: str | None = None,
    nonce: str | None = None,
    signed_at_ms: int | None = None,
) -> dict[str, Any]:
    """Sign a connect attempt and return the ``device`` block of the request.

    Args:
        identity: Device keypair
        client_id: Client descriptor id
        client_mode: Client descriptor mode
        role: Session role ("operator" or "node")
        scopes: Requested scopes
        token: Bearer token, if any
        nonce: Challenge nonce from the server, if any
        signed_at_ms: Epoch milliseconds override

    Returns:
        Dict with id, publicKey, signature, signedAt and, when bound to a
        challenge, nonce.
    """
    if signed_at_ms is None:
        signed_at_ms = int(time.time() * 1000)

    device_id = identity.fingerprint
    payload = build_device_auth_payload(
        device_id=device_id,
        client_id=client_id,
        client_mode=client_mode,
        role=role,
        scopes=scopes,
        signed_at_ms=signed_at_ms,
        token=token,
        nonce=nonce,
    )
    signature = identity.sign(payload.encode("utf-8"))

    assertion: dict[str, Any] = {
        "id": device_id,
        "publicKey": base64url_encode(identity.public_key_bytes),
        "signature": base64url_encode(signature),
        "signedAt": signed_at_ms,
    }
    if nonce:
        assertion["nonce"] = nonce
    return assertion
