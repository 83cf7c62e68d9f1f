"""Companion verification — prove the backend signature was already checked.

A commit never performs elliptic-curve math. The client places a signature
verification instruction earlier in the same atomic batch; the platform
executes it and aborts the whole batch if the signature is invalid. The
ledger then only has to prove that the verified (signature, public key,
message) triple is exactly the one it expects, so a validly signed but
different payload cannot be substituted.

Verification record layout (client instruction builder, one signature):

    [0, 16)     header: u8 count, u8 padding, then u16 LE offsets/indices
    [16, 48)    public key
    [48, 112)   signature
    [112, end)  message

The locator reads fixed offsets; it does not interpret the header beyond
the signature count.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from typing import Optional, Protocol, runtime_checkable

from raiseledger.crypto.proof import verify_proof_signature
from raiseledger.errors import SignatureVerificationFailed, VerificationFailure
from raiseledger.models.ledger import PUBKEY_LEN, SIGNATURE_LEN, require_pubkey

SIGNATURE_VERIFIER_PROGRAM_ID = "Ed25519SigVerify111111111111111111111111111"
LEDGER_PROGRAM_ID = "raiseledger"

RECORD_HEADER_LEN = 16
PUBKEY_OFFSET = 16
SIGNATURE_OFFSET = PUBKEY_OFFSET + PUBKEY_LEN
MESSAGE_OFFSET = SIGNATURE_OFFSET + SIGNATURE_LEN
MIN_RECORD_LEN = MESSAGE_OFFSET

# u16 instruction index meaning "data lives in this same instruction"
CURRENT_INSTRUCTION = 0xFFFF

_OFFSETS = struct.Struct("<HHHHHHH")


@dataclass(frozen=True)
class Instruction:
    """One operation in an atomic batch."""
    program_id: str
    data: bytes


@dataclass
class InstructionBatch:
    """Ordered operations executed atomically, plus the executing index."""
    instructions: list[Instruction] = field(default_factory=list)
    current_index: int = 0

    def __post_init__(self) -> None:
        if not 0 <= self.current_index < max(len(self.instructions), 1):
            raise ValueError(
                f"current_index {self.current_index} outside batch of "
                f"{len(self.instructions)} instructions"
            )

    @classmethod
    def for_commit(
        cls,
        *prior: Instruction,
        program_id: str = LEDGER_PROGRAM_ID,
    ) -> InstructionBatch:
        """Batch whose last instruction is the ledger commit being executed."""
        instructions = list(prior) + [Instruction(program_id, b"commit_resources")]
        return cls(instructions=instructions, current_index=len(instructions) - 1)

    def preflight(self, verifier_program_id: str = SIGNATURE_VERIFIER_PROGRAM_ID) -> None:
        """Run every signature verification instruction, as the platform does.

        Any failure aborts the whole batch before a program instruction runs.
        """
        for instruction in self.instructions:
            if instruction.program_id == verifier_program_id:
                run_signature_verifier(instruction)


@dataclass(frozen=True)
class ExpectedSignature:
    """The triple the ledger requires to have been verified."""
    signature: bytes
    message: bytes
    public_key: bytes


def build_verification_instruction(
    public_key: bytes,
    signature: bytes,
    message: bytes,
    program_id: str = SIGNATURE_VERIFIER_PROGRAM_ID,
) -> Instruction:
    """Encode a single-signature verification instruction."""
    require_pubkey(public_key, "public key")
    if len(signature) != SIGNATURE_LEN:
        raise ValueError(f"Signature must be {SIGNATURE_LEN} bytes")
    if len(message) > 0xFFFF:
        raise ValueError("Message too long for a verification record")

    header = bytes([1, 0]) + _OFFSETS.pack(
        SIGNATURE_OFFSET,
        CURRENT_INSTRUCTION,
        PUBKEY_OFFSET,
        CURRENT_INSTRUCTION,
        MESSAGE_OFFSET,
        len(message),
        CURRENT_INSTRUCTION,
    )
    data = header + bytes(public_key) + bytes(signature) + bytes(message)
    return Instruction(program_id=program_id, data=data)


def run_signature_verifier(instruction: Instruction) -> None:
    """Platform-side check of a verification instruction.

    Parses the offset header for each declared signature and verifies it
    with Ed25519. Only data inside the same instruction is supported.
    """
    data = instruction.data
    if len(data) < 2:
        raise SignatureVerificationFailed(VerificationFailure.MALFORMED, "empty record")
    count = data[0]
    if count == 0:
        raise SignatureVerificationFailed(VerificationFailure.MALFORMED, "no signatures")

    for i in range(count):
        start = 2 + i * _OFFSETS.size
        if len(data) < start + _OFFSETS.size:
            raise SignatureVerificationFailed(
                VerificationFailure.MALFORMED, f"truncated offsets for signature {i}"
            )
        (sig_off, sig_ix, key_off, key_ix,
         msg_off, msg_len, msg_ix) = _OFFSETS.unpack_from(data, start)
        if (sig_ix, key_ix, msg_ix) != (CURRENT_INSTRUCTION,) * 3:
            raise SignatureVerificationFailed(
                VerificationFailure.MALFORMED, "cross-instruction data is not supported"
            )
        signature = _slice(data, sig_off, SIGNATURE_LEN)
        public_key = _slice(data, key_off, PUBKEY_LEN)
        message = _slice(data, msg_off, msg_len)
        try:
            valid = verify_proof_signature(public_key, signature, message)
        except ValueError as e:
            raise SignatureVerificationFailed(VerificationFailure.MALFORMED, str(e)) from e
        if not valid:
            raise SignatureVerificationFailed(VerificationFailure.INVALID_SIGNATURE)


def _slice(data: bytes, offset: int, length: int) -> bytes:
    if offset + length > len(data):
        raise SignatureVerificationFailed(
            VerificationFailure.MALFORMED,
            f"field [{offset}, {offset + length}) exceeds record of {len(data)} bytes",
        )
    return bytes(data[offset:offset + length])


@runtime_checkable
class SignatureLocator(Protocol):
    """Proves a matching signature was verified earlier in the batch.

    Implementations raise SignatureVerificationFailed and return None on
    success. Tests substitute stubs to exercise the ledger without a real
    batch.
    """

    def locate_verified_signature(
        self, batch: InstructionBatch, expected: ExpectedSignature,
    ) -> None:
        ...


class BatchSignatureLocator:
    """Scans backwards from the executing instruction for a verifier record.

    The nearest preceding record wins; it need not be adjacent. Mismatches
    are reported in the order signature, public key, message.
    """

    def __init__(self, verifier_program_id: str = SIGNATURE_VERIFIER_PROGRAM_ID) -> None:
        self._verifier_program_id = verifier_program_id

    def find_record(self, batch: InstructionBatch) -> Optional[Instruction]:
        for index in range(batch.current_index - 1, -1, -1):
            instruction = batch.instructions[index]
            if instruction.program_id == self._verifier_program_id:
                return instruction
        return None

    def locate_verified_signature(
        self, batch: InstructionBatch, expected: ExpectedSignature,
    ) -> None:
        record = self.find_record(batch)
        if record is None:
            raise SignatureVerificationFailed(
                VerificationFailure.NOT_FOUND,
                "no signature verification instruction precedes this one",
            )

        data = record.data
        if len(data) < MIN_RECORD_LEN:
            raise SignatureVerificationFailed(
                VerificationFailure.MALFORMED,
                f"record too short: expected at least {MIN_RECORD_LEN} bytes, got {len(data)}",
            )
        count = data[0]
        if count != 1:
            raise SignatureVerificationFailed(
                VerificationFailure.MALFORMED, f"expected 1 signature, got {count}"
            )

        actual_pubkey = data[PUBKEY_OFFSET:SIGNATURE_OFFSET]
        actual_signature = data[SIGNATURE_OFFSET:MESSAGE_OFFSET]
        actual_message = data[MESSAGE_OFFSET:]

        if actual_signature != expected.signature:
            raise SignatureVerificationFailed(VerificationFailure.SIGNATURE_MISMATCH)
        if actual_pubkey != expected.public_key:
            raise SignatureVerificationFailed(VerificationFailure.PUBKEY_MISMATCH)
        if actual_message != expected.message:
            raise SignatureVerificationFailed(VerificationFailure.MESSAGE_MISMATCH)
