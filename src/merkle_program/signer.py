"""Signer - Payer identities and signatures over instruction payloads."""

# Merkle Program - signer.py
# Copyright (C) 2025 The Axiom Contributors
# This program is licensed under the Peer Production License (PPL).
# See the LICENSE file for full details.

from __future__ import annotations

from dataclasses import dataclass

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ed25519

from merkle_program.constants import PUBKEY_SIZE, SIGNATURE_SIZE


@dataclass(frozen=True)
class Keypair:
    """An ed25519 key pair; the raw public key doubles as an address."""

    private_key: ed25519.Ed25519PrivateKey

    @staticmethod
    def generate() -> Keypair:
        """Create a fresh key pair."""
        return Keypair(ed25519.Ed25519PrivateKey.generate())

    @staticmethod
    def from_seed(seed: bytes) -> Keypair:
        """Rebuild a key pair from its 32-byte private seed."""
        return Keypair(ed25519.Ed25519PrivateKey.from_private_bytes(seed))

    @property
    def public_key(self) -> bytes:
        return self.private_key.public_key().public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )

    def seed(self) -> bytes:
        return self.private_key.private_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PrivateFormat.Raw,
            encryption_algorithm=serialization.NoEncryption(),
        )

    def sign(self, message: bytes) -> bytes:
        """Sign a message with the private key."""
        return self.private_key.sign(message)


def verify_signature(
    signature: bytes,
    message: bytes,
    public_key: bytes,
) -> bool:
    """Check that ``signature`` was made over ``message`` by ``public_key``.

    Malformed keys or signatures are reported as a failed check.
    """
    if len(public_key) != PUBKEY_SIZE or len(signature) != SIGNATURE_SIZE:
        return False
    try:
        ed25519.Ed25519PublicKey.from_public_bytes(public_key).verify(
            signature,
            message,
        )
        return True
    except (InvalidSignature, ValueError):
        return False
