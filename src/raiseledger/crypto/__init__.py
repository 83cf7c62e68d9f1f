"""Proof canonicalization, backend signing, and companion verification."""

from raiseledger.crypto.companion import (
    BatchSignatureLocator,
    ExpectedSignature,
    Instruction,
    InstructionBatch,
    SignatureLocator,
    build_verification_instruction,
)
from raiseledger.crypto.proof import BackendSigner, create_proof_message

__all__ = [
    "BackendSigner",
    "BatchSignatureLocator",
    "ExpectedSignature",
    "Instruction",
    "InstructionBatch",
    "SignatureLocator",
    "build_verification_instruction",
    "create_proof_message",
]
