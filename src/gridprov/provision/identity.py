"""Local key material backed by the ``cryptography`` package."""

from __future__ import annotations

import base64

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)
from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey

from gridprov.models.network import KeyPair
from gridprov.provision.clients import IdentityProvider

_RAW = serialization.Encoding.Raw


def generate_wg_keypair() -> KeyPair:
    """Generate a WireGuard (X25519) key pair, base64 encoded."""
    private_key = X25519PrivateKey.generate()
    private_raw = private_key.private_bytes(
        encoding=_RAW,
        format=serialization.PrivateFormat.Raw,
        encryption_algorithm=serialization.NoEncryption(),
    )
    public_raw = private_key.public_key().public_bytes(
        encoding=_RAW, format=serialization.PublicFormat.Raw
    )
    return KeyPair(
        private_key=base64.b64encode(private_raw).decode("ascii"),
        public_key=base64.b64encode(public_raw).decode("ascii"),
    )


def wg_public_key(private_key: str) -> str:
    """Derive the base64 public key of a base64 WireGuard private key."""
    key = X25519PrivateKey.from_private_bytes(base64.b64decode(private_key))
    public_raw = key.public_key().public_bytes(
        encoding=_RAW, format=serialization.PublicFormat.Raw
    )
    return base64.b64encode(public_raw).decode("ascii")


class Ed25519Identity(IdentityProvider):
    """Twin identity signing deployments with an Ed25519 key.

    Field encryption is delegated to an external collaborator; this identity
    only signs.
    """

    def __init__(self, twin_id: int, private_key: Ed25519PrivateKey | None = None) -> None:
        self._twin_id = twin_id
        self._private_key = private_key or Ed25519PrivateKey.generate()

    @property
    def twin_id(self) -> int:
        return self._twin_id

    @property
    def public_key(self) -> Ed25519PublicKey:
        return self._private_key.public_key()

    def sign(self, data: bytes) -> bytes:
        return self._private_key.sign(data)

    def encrypt_for(self, secret: str) -> str:
        raise NotImplementedError(
            "Field encryption is not provided by the local Ed25519 identity."
        )
