#!/usr/bin/env python3
"""Sign a points-deduction proof with the backend key.

The backend deducts a user's points off-ledger, then hands the user this
signed proof. The user submits it with a commit; the ledger accepts the
commit only if the same signature was verified earlier in the batch.

Usage:
    python3 tools/create_backend_proof.py <userHex> <points> <nonce> <expiryUnix>
    python3 tools/create_backend_proof.py --generate-keypair

Requires:
    BACKEND_PRIVATE_KEY (hex, 32-byte seed or 64-byte secret key) in a .env
    file at the project root, unless generating a keypair.
"""

import json
import os
import sys
from pathlib import Path

# Add src to path for raiseledger imports
ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT / "src"))

from dotenv import load_dotenv  # noqa: E402
from raiseledger.crypto.proof import (  # noqa: E402
    BackendSigner,
    verify_proof_signature,
)


def generate_keypair() -> int:
    signer = BackendSigner.generate()
    print(json.dumps({
        "public_key": signer.public_key.hex(),
        "private_key": signer.secret_key[:32].hex(),
    }, indent=2))
    print()
    print("Register public_key with init-backend. Keep private_key secret.")
    return 0


def main(argv: list[str]) -> int:
    if argv and argv[0] == "--generate-keypair":
        return generate_keypair()

    if len(argv) != 4:
        print(__doc__)
        return 1

    load_dotenv(ROOT / ".env")
    key_hex = os.getenv("BACKEND_PRIVATE_KEY")
    if not key_hex:
        print("ERROR: Missing BACKEND_PRIVATE_KEY in .env")
        return 1

    user_hex, points, nonce, expiry = argv
    try:
        signer = BackendSigner.from_secret(bytes.fromhex(key_hex.strip()))
        proof = signer.sign_proof(bytes.fromhex(user_hex), int(points), int(nonce), int(expiry))
    except ValueError as e:
        print(f"ERROR: {e}")
        return 1

    print(f"  Backend key:   {proof.backend_pubkey.hex()}")
    print(f"  User:          {proof.user.hex()}")
    print(f"  Points:        {proof.points}")
    print(f"  Nonce:         {proof.nonce}")
    print(f"  Expiry:        {proof.expiry}")
    print(f"  Message:       {len(proof.message)} bytes")

    valid = verify_proof_signature(proof.backend_pubkey, proof.signature, proof.message)
    print(f"  Self-check:    {'VALID' if valid else 'INVALID'}")
    if not valid:
        return 1

    print()
    print(json.dumps(proof.to_dict(), indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
