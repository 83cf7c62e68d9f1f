"""Ledger records — the three persisted record kinds.

All amounts are unsigned 64-bit integers. No floats in accounting.

Persisted layout is bit-exact and little-endian. Each encoded record is an
8-byte type discriminator followed by the fixed-width body:

    DistributionLedger      82 bytes  (32+8+8+1+8+8+8+8+1)
    UserCommitmentRecord    57 bytes  (32+8+8+8+1)
    BackendAuthorityRecord  73 bytes  (32+32+1+8)

The discriminator is sha256("account:<Name>")[:8], so stored records stay
readable by existing off-chain tooling.
"""

from __future__ import annotations

import enum
import hashlib
import struct
from dataclasses import dataclass
from typing import Any, ClassVar, Optional

PUBKEY_LEN = 32
SIGNATURE_LEN = 64
DISCRIMINATOR_LEN = 8

U64_MAX = 2**64 - 1
I64_MIN = -(2**63)
I64_MAX = 2**63 - 1

# Address derivation seeds
LEDGER_SEED = b"global_distribution_state"
VAULT_SEED = b"token_vault"
COMMITMENT_SEED = b"commitment"
BACKEND_AUTHORITY_SEED = b"backend_authority"


def derive_address(*seeds: bytes) -> bytes:
    """Derive a deterministic 32-byte identity from seed byte strings."""
    digest = hashlib.sha256()
    for seed in seeds:
        digest.update(seed)
    return digest.digest()


def ledger_address() -> bytes:
    """Custody identity of the distribution ledger."""
    return derive_address(LEDGER_SEED)


def vault_address(ledger: bytes) -> bytes:
    """Token vault identity owned by the given ledger."""
    return derive_address(VAULT_SEED, ledger)


def account_discriminator(name: str) -> bytes:
    return hashlib.sha256(f"account:{name}".encode("utf-8")).digest()[:DISCRIMINATOR_LEN]


def require_pubkey(value: bytes, label: str = "identity") -> bytes:
    """Validate a 32-byte identity and return it as immutable bytes."""
    if not isinstance(value, (bytes, bytearray)) or len(value) != PUBKEY_LEN:
        raise ValueError(f"{label} must be {PUBKEY_LEN} bytes")
    return bytes(value)


def require_u64(value: int, label: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{label} must be an integer")
    if value < 0 or value > U64_MAX:
        raise ValueError(f"{label} must be an unsigned 64-bit integer, got {value}")
    return value


def require_i64(value: int, label: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{label} must be an integer")
    if value < I64_MIN or value > I64_MAX:
        raise ValueError(f"{label} must be a signed 64-bit integer, got {value}")
    return value


def _decode_bool(byte: int, label: str) -> bool:
    if byte not in (0, 1):
        raise ValueError(f"Invalid bool byte for {label}: {byte}")
    return byte == 1


class _Codec:
    """Shared discriminator/body framing for fixed-width records."""

    ACCOUNT_NAME: ClassVar[str]
    LAYOUT: ClassVar[struct.Struct]
    LEN: ClassVar[int]

    @classmethod
    def discriminator(cls) -> bytes:
        return account_discriminator(cls.ACCOUNT_NAME)

    @classmethod
    def _pack(cls, *fields: Any) -> bytes:
        try:
            body = cls.LAYOUT.pack(*fields)
        except struct.error as e:
            raise ValueError(f"Cannot encode {cls.ACCOUNT_NAME}: {e}") from e
        return cls.discriminator() + body

    @classmethod
    def _unpack(cls, data: bytes) -> tuple:
        expected = DISCRIMINATOR_LEN + cls.LEN
        if len(data) != expected:
            raise ValueError(
                f"{cls.ACCOUNT_NAME} must be {expected} bytes, got {len(data)}"
            )
        if bytes(data[:DISCRIMINATOR_LEN]) != cls.discriminator():
            raise ValueError(f"Discriminator mismatch for {cls.ACCOUNT_NAME}")
        return cls.LAYOUT.unpack(bytes(data[DISCRIMINATOR_LEN:]))


class DistributionPhase(str, enum.Enum):
    """Lifecycle of the distribution ledger.

    UNINITIALIZED → ACTIVE → CLOSED. The ACTIVE → CLOSED latch is one-way.
    """
    UNINITIALIZED = "uninitialized"
    ACTIVE = "active"
    CLOSED = "closed"


@dataclass
class DistributionLedger(_Codec):
    """Global raise state. One per deployment.

    Invariant: total_raised == sum of every UserCommitmentRecord.sol_amount
    and total_score == sum of every UserCommitmentRecord.score. Both are
    maintained with checked addition, never recomputed.

    `rate` is fixed point with scale 10^9: raise-currency units per point.
    """
    authority: bytes
    token_pool: int = 0
    total_score: int = 0
    active: bool = True
    commit_end_time: int = 0
    rate: int = 0
    target_raise: int = 0
    total_raised: int = 0
    bump: int = 255

    ACCOUNT_NAME: ClassVar[str] = "DistributionState"
    LAYOUT: ClassVar[struct.Struct] = struct.Struct("<32sQQBqQQQB")
    LEN: ClassVar[int] = 82

    @property
    def phase(self) -> DistributionPhase:
        return DistributionPhase.ACTIVE if self.active else DistributionPhase.CLOSED

    def to_bytes(self) -> bytes:
        return self._pack(
            require_pubkey(self.authority, "authority"),
            self.token_pool,
            self.total_score,
            int(self.active),
            self.commit_end_time,
            self.rate,
            self.target_raise,
            self.total_raised,
            self.bump,
        )

    @classmethod
    def from_bytes(cls, data: bytes) -> DistributionLedger:
        (authority, token_pool, total_score, active, commit_end_time,
         rate, target_raise, total_raised, bump) = cls._unpack(data)
        return cls(
            authority=authority,
            token_pool=token_pool,
            total_score=total_score,
            active=_decode_bool(active, "active"),
            commit_end_time=commit_end_time,
            rate=rate,
            target_raise=target_raise,
            total_raised=total_raised,
            bump=bump,
        )

    def as_dict(self) -> dict[str, Any]:
        return {
            "authority": self.authority.hex(),
            "token_pool": self.token_pool,
            "total_score": self.total_score,
            "active": self.active,
            "phase": self.phase.value,
            "commit_end_time": self.commit_end_time,
            "rate": self.rate,
            "target_raise": self.target_raise,
            "total_raised": self.total_raised,
        }


@dataclass
class BackendAuthorityRecord(_Codec):
    """The off-chain backend allowed to sign point proofs.

    nonce_counter is a global high-water mark shared by all users. It never
    decreases.
    """
    authority: bytes
    backend_pubkey: bytes
    active: bool = True
    nonce_counter: int = 0

    ACCOUNT_NAME: ClassVar[str] = "BackendAuthority"
    LAYOUT: ClassVar[struct.Struct] = struct.Struct("<32s32sBQ")
    LEN: ClassVar[int] = 73

    def to_bytes(self) -> bytes:
        return self._pack(
            require_pubkey(self.authority, "authority"),
            require_pubkey(self.backend_pubkey, "backend_pubkey"),
            int(self.active),
            self.nonce_counter,
        )

    @classmethod
    def from_bytes(cls, data: bytes) -> BackendAuthorityRecord:
        authority, backend_pubkey, active, nonce_counter = cls._unpack(data)
        return cls(
            authority=authority,
            backend_pubkey=backend_pubkey,
            active=_decode_bool(active, "active"),
            nonce_counter=nonce_counter,
        )

    def as_dict(self) -> dict[str, Any]:
        return {
            "authority": self.authority.hex(),
            "backend_pubkey": self.backend_pubkey.hex(),
            "active": self.active,
            "nonce_counter": self.nonce_counter,
        }


@dataclass
class UserCommitmentRecord(_Codec):
    """Cumulative contribution of one user.

    score equals cumulative sol_amount; points only size the minimum
    contribution. claimed is a one-way latch.
    """
    user: bytes
    points: int = 0
    sol_amount: int = 0
    score: int = 0
    claimed: bool = False

    ACCOUNT_NAME: ClassVar[str] = "UserCommitment"
    LAYOUT: ClassVar[struct.Struct] = struct.Struct("<32sQQQB")
    LEN: ClassVar[int] = 57

    def to_bytes(self) -> bytes:
        return self._pack(
            require_pubkey(self.user, "user"),
            self.points,
            self.sol_amount,
            self.score,
            int(self.claimed),
        )

    @classmethod
    def from_bytes(cls, data: bytes) -> UserCommitmentRecord:
        user, points, sol_amount, score, claimed = cls._unpack(data)
        return cls(
            user=user,
            points=points,
            sol_amount=sol_amount,
            score=score,
            claimed=_decode_bool(claimed, "claimed"),
        )

    def as_dict(self) -> dict[str, Any]:
        return {
            "user": self.user.hex(),
            "points": self.points,
            "sol_amount": self.sol_amount,
            "score": self.score,
            "claimed": self.claimed,
        }


def phase_of(ledger: Optional[DistributionLedger]) -> DistributionPhase:
    if ledger is None:
        return DistributionPhase.UNINITIALIZED
    return ledger.phase
