#!/usr/bin/env python3
"""Raiseledger invariant checks against policy and the wire contract."""

import sys
from pathlib import Path
from typing import Optional

ROOT = Path(__file__).resolve().parents[1]
CONFIG_DIR = ROOT / "config"
sys.path.insert(0, str(ROOT / "src"))

from raiseledger.crypto.companion import (  # noqa: E402
    MESSAGE_OFFSET,
    PUBKEY_OFFSET,
    SIGNATURE_OFFSET,
)
from raiseledger.crypto.proof import PROOF_DOMAIN_TAG, PROOF_MESSAGE_LEN  # noqa: E402
from raiseledger.distribution.prorata import RATE_SCALE  # noqa: E402
from raiseledger.models.ledger import (  # noqa: E402
    DISCRIMINATOR_LEN,
    BackendAuthorityRecord,
    DistributionLedger,
    UserCommitmentRecord,
)
from raiseledger.policy.resolver import PolicyResolver  # noqa: E402


EXPECTED_RECORD_LENGTHS = {
    DistributionLedger: 82,
    UserCommitmentRecord: 57,
    BackendAuthorityRecord: 73,
}


def check_layouts(errors: list[str]) -> None:
    """Record layouts and offsets are fixed by deployed tooling."""
    for record_cls, expected in EXPECTED_RECORD_LENGTHS.items():
        if record_cls.LEN != expected:
            errors.append(f"{record_cls.__name__}.LEN must be {expected}, got {record_cls.LEN}")
        if record_cls.LAYOUT.size != record_cls.LEN:
            errors.append(
                f"{record_cls.__name__} layout packs {record_cls.LAYOUT.size} bytes, "
                f"declared {record_cls.LEN}"
            )
        if len(record_cls.discriminator()) != DISCRIMINATOR_LEN:
            errors.append(f"{record_cls.__name__} discriminator must be {DISCRIMINATOR_LEN} bytes")

    if PROOF_DOMAIN_TAG != b"POINTS_DEDUCTION_PROOF:":
        errors.append("Proof domain tag changed")
    if PROOF_MESSAGE_LEN != 79:
        errors.append(f"Proof message must be 79 bytes, got {PROOF_MESSAGE_LEN}")
    if (PUBKEY_OFFSET, SIGNATURE_OFFSET, MESSAGE_OFFSET) != (16, 48, 112):
        errors.append("Verification record offsets must be 16/48/112")


def check(config_dir: Optional[Path] = None) -> int:
    errors: list[str] = []

    # --- Policy loads and resolves ---
    try:
        resolver = PolicyResolver.from_config_dir(config_dir or CONFIG_DIR)
    except (OSError, ValueError) as e:
        print("Invariant check failed:")
        print(f"- policy does not load: {e}")
        return 1

    if not resolver.signature_verifier_program_id():
        errors.append("signature_verifier.program_id must not be empty")

    # --- Deployment defaults ---
    defaults = resolver.deployment_defaults()
    if defaults.rate <= 0:
        errors.append("deployment.rate must be > 0")
    if defaults.rate > RATE_SCALE * 10**6:
        errors.append(f"deployment.rate implausibly large: {defaults.rate}")
    if defaults.target_raise <= 0:
        errors.append("deployment.target_raise must be > 0")

    # --- Wire contract ---
    check_layouts(errors)

    if errors:
        print("Invariant check failed:")
        for err in errors:
            print(f"- {err}")
        return 1

    print("Invariant check passed.")
    return 0


if __name__ == "__main__":
    raise SystemExit(check())
