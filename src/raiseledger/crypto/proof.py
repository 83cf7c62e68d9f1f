"""Points-deduction proofs — the message the off-chain backend signs.

Canonical message layout (wire contract with the backend signer; any change
to tag, field order, or byte order is a breaking protocol change):

    b"POINTS_DEDUCTION_PROOF:"   23 bytes
    user identity                32 bytes
    points                        8 bytes, u64 little-endian
    nonce                         8 bytes, u64 little-endian
    expiry                        8 bytes, i64 little-endian

The ledger itself never verifies signatures. Signing and the offline check
below exist for the backend service and for tooling.
"""

from __future__ import annotations

import base64
import struct
from dataclasses import dataclass
from typing import Any

from nacl.exceptions import BadSignatureError, CryptoError
from nacl.signing import SigningKey, VerifyKey

from raiseledger.models.ledger import (
    PUBKEY_LEN,
    SIGNATURE_LEN,
    require_i64,
    require_pubkey,
    require_u64,
)

PROOF_DOMAIN_TAG = b"POINTS_DEDUCTION_PROOF:"
PROOF_MESSAGE_LEN = len(PROOF_DOMAIN_TAG) + PUBKEY_LEN + 24

_TAIL = struct.Struct("<QQq")


def create_proof_message(user: bytes, points: int, nonce: int, expiry: int) -> bytes:
    """Build the canonical byte message for a points-deduction proof."""
    return (
        PROOF_DOMAIN_TAG
        + require_pubkey(user, "user")
        + _TAIL.pack(
            require_u64(points, "points"),
            require_u64(nonce, "nonce"),
            require_i64(expiry, "expiry"),
        )
    )


@dataclass(frozen=True)
class BackendProof:
    """A signed points-deduction proof as handed to a participant."""
    user: bytes
    points: int
    nonce: int
    expiry: int
    message: bytes
    signature: bytes
    backend_pubkey: bytes

    def to_dict(self) -> dict[str, Any]:
        return {
            "user": self.user.hex(),
            "points": str(self.points),
            "nonce": str(self.nonce),
            "expiry": str(self.expiry),
            "backend_pubkey": self.backend_pubkey.hex(),
            "signature_hex": self.signature.hex(),
            "signature_base64": base64.b64encode(self.signature).decode("ascii"),
            "message_hex": self.message.hex(),
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> BackendProof:
        """Rebuild a proof from to_dict() output, checking the message."""
        proof = BackendProof(
            user=bytes.fromhex(data["user"]),
            points=int(data["points"]),
            nonce=int(data["nonce"]),
            expiry=int(data["expiry"]),
            message=bytes.fromhex(data["message_hex"]),
            signature=bytes.fromhex(data["signature_hex"]),
            backend_pubkey=bytes.fromhex(data["backend_pubkey"]),
        )
        expected = create_proof_message(proof.user, proof.points, proof.nonce, proof.expiry)
        if proof.message != expected:
            raise ValueError("Proof message does not match its fields")
        return proof


class BackendSigner:
    """Ed25519 signer for the backend service.

    Accepts either a 32-byte seed or a 64-byte secret key (seed followed by
    the public key). A 64-byte key whose halves disagree is rejected.

    Usage:
        signer = BackendSigner.from_secret(bytes.fromhex(key_hex))
        proof = signer.sign_proof(user, points=1000, nonce=7, expiry=ts)
    """

    def __init__(self, signing_key: SigningKey) -> None:
        self._signing_key = signing_key

    @classmethod
    def from_secret(cls, secret: bytes) -> BackendSigner:
        if len(secret) == 32:
            return cls(SigningKey(bytes(secret)))
        if len(secret) == 64:
            key = SigningKey(bytes(secret[:32]))
            if key.verify_key.encode() != bytes(secret[32:]):
                raise ValueError("Secret key public half does not match its seed")
            return cls(key)
        raise ValueError(
            f"Invalid private key length: {len(secret)} bytes. Expected 32 or 64 bytes."
        )

    @classmethod
    def generate(cls) -> BackendSigner:
        return cls(SigningKey.generate())

    @property
    def public_key(self) -> bytes:
        return self._signing_key.verify_key.encode()

    @property
    def secret_key(self) -> bytes:
        """64-byte seed ‖ pubkey form used by wallet tooling."""
        return self._signing_key.encode() + self.public_key

    def sign(self, message: bytes) -> bytes:
        return self._signing_key.sign(message).signature

    def sign_proof(self, user: bytes, points: int, nonce: int, expiry: int) -> BackendProof:
        message = create_proof_message(user, points, nonce, expiry)
        return BackendProof(
            user=bytes(user),
            points=points,
            nonce=nonce,
            expiry=expiry,
            message=message,
            signature=self.sign(message),
            backend_pubkey=self.public_key,
        )


def verify_proof_signature(pubkey: bytes, signature: bytes, message: bytes) -> bool:
    """Check an Ed25519 signature offline.

    Returns False for a well-formed but wrong signature. Raises ValueError
    when the key or signature bytes cannot be parsed at all.
    """
    if len(signature) != SIGNATURE_LEN:
        raise ValueError(f"Signature must be {SIGNATURE_LEN} bytes")
    try:
        verify_key = VerifyKey(require_pubkey(pubkey, "public key"))
    except CryptoError as e:
        raise ValueError(f"Invalid public key: {e}") from e
    try:
        verify_key.verify(bytes(message), bytes(signature))
    except BadSignatureError:
        return False
    return True
