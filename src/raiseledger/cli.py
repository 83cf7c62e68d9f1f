"""Raiseledger CLI — command-line interface for the distribution ledger.

Identities, keys, and signatures are passed as hex. Amounts are integers in
base units (raise currency or token), never decimals.

Usage:
    python -m raiseledger.cli status
    python -m raiseledger.cli initialize --authority <hex>
    python -m raiseledger.cli init-backend --authority <hex> --backend-pubkey <hex>
    python -m raiseledger.cli create-vault --authority <hex>
    python -m raiseledger.cli credit --asset token --account <hex> --amount 1000000000
    python -m raiseledger.cli fund-vault --authority <hex> --amount 1000000000
    python -m raiseledger.cli sign-proof --user <hex> --points 2000 --nonce 1 --out proof.json
    python -m raiseledger.cli commit --proof proof.json --amount 1
    python -m raiseledger.cli claim --user <hex>
    python -m raiseledger.cli withdraw --authority <hex> --amount 1
    python -m raiseledger.cli check-invariants
"""

from __future__ import annotations

import argparse
import json
import os
import sys
from decimal import Decimal, InvalidOperation
from pathlib import Path

from dotenv import load_dotenv

from raiseledger.crypto.proof import BackendProof, BackendSigner
from raiseledger.distribution.coordinator import unix_now
from raiseledger.distribution.custody import Asset
from raiseledger.distribution.prorata import rate_from_decimal
from raiseledger.models.ledger import PUBKEY_LEN
from raiseledger.persistence.event_log import EventLog
from raiseledger.persistence.state_store import StateStore
from raiseledger.policy.resolver import PolicyResolver
from raiseledger.service import LedgerService, ServiceResult


ROOT = Path(__file__).resolve().parents[2]
DEFAULT_CONFIG = ROOT / "config"
DEFAULT_DATA = ROOT / "data"
DEFAULT_ENV = ROOT / ".env"

BACKEND_KEY_VAR = "BACKEND_PRIVATE_KEY"


def _make_service(config_dir: Path, data_dir: Path = DEFAULT_DATA) -> LedgerService:
    """Create a LedgerService with durable persistence."""
    data_dir.mkdir(parents=True, exist_ok=True)
    resolver = PolicyResolver.from_config_dir(config_dir)
    event_log = EventLog(storage_path=data_dir / "events.jsonl")
    state_store = StateStore(storage_path=data_dir / "state.json")
    return LedgerService(
        resolver,
        event_log=event_log,
        state_store=state_store,
    )


def _identity(value: str) -> bytes:
    """argparse type: 32-byte identity as hex."""
    try:
        raw = bytes.fromhex(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"not hex: {value!r}") from e
    if len(raw) != PUBKEY_LEN:
        raise argparse.ArgumentTypeError(f"identity must be {PUBKEY_LEN} bytes, got {len(raw)}")
    return raw


def _bool(value: str) -> bool:
    lowered = value.lower()
    if lowered in ("true", "yes", "1"):
        return True
    if lowered in ("false", "no", "0"):
        return False
    raise argparse.ArgumentTypeError(f"expected true or false, got {value!r}")


def _load_backend_signer(env_file: Path) -> BackendSigner:
    """Read the backend key from the environment (or .env).

    Accepts hex of a 32-byte seed or 64-byte secret key, or a JSON array of
    byte values as written by wallet keypair files.
    """
    load_dotenv(env_file)
    raw = os.getenv(BACKEND_KEY_VAR)
    if not raw:
        raise ValueError(f"{BACKEND_KEY_VAR} is not set")
    raw = raw.strip()
    if raw.startswith("["):
        secret = bytes(json.loads(raw))
    else:
        secret = bytes.fromhex(raw)
    return BackendSigner.from_secret(secret)


def _report(result: ServiceResult) -> int:
    if result.success:
        print(json.dumps(result.data, indent=2, default=str))
        return 0
    code = result.error_code
    prefix = f"Failed [{code}]" if code else "Failed"
    print(f"{prefix}: {'; '.join(result.errors)}", file=sys.stderr)
    return 1


def cmd_status(args: argparse.Namespace) -> int:
    service = _make_service(args.config, args.data)
    status = service.status()
    print(json.dumps(status, indent=2))
    return 0


def cmd_initialize(args: argparse.Namespace) -> int:
    service = _make_service(args.config, args.data)
    if args.end_time is None and args.rate is None and args.target is None:
        return _report(service.initialize_from_policy(args.authority))

    defaults = PolicyResolver.from_config_dir(args.config).deployment_defaults()
    end_time = (
        args.end_time if args.end_time is not None
        else unix_now() + defaults.commit_window_seconds
    )
    rate = defaults.rate
    if args.rate is not None:
        try:
            rate = rate_from_decimal(Decimal(args.rate))
        except (InvalidOperation, ValueError) as e:
            print(f"Failed: invalid rate {args.rate!r}: {e}", file=sys.stderr)
            return 1
    target = args.target if args.target is not None else defaults.target_raise
    return _report(service.initialize(args.authority, end_time, rate, target))


def cmd_set_end_time(args: argparse.Namespace) -> int:
    service = _make_service(args.config, args.data)
    return _report(service.set_commit_end_time(args.authority, args.end_time))


def cmd_init_backend(args: argparse.Namespace) -> int:
    service = _make_service(args.config, args.data)
    return _report(service.initialize_backend_authority(args.authority, args.backend_pubkey))


def cmd_set_backend_active(args: argparse.Namespace) -> int:
    service = _make_service(args.config, args.data)
    return _report(service.update_backend_authority(args.authority, args.active))


def cmd_rotate_backend_key(args: argparse.Namespace) -> int:
    service = _make_service(args.config, args.data)
    return _report(service.update_backend_pubkey(args.authority, args.backend_pubkey))


def cmd_create_vault(args: argparse.Namespace) -> int:
    service = _make_service(args.config, args.data)
    return _report(service.create_token_vault(args.authority))


def cmd_fund_vault(args: argparse.Namespace) -> int:
    service = _make_service(args.config, args.data)
    return _report(service.fund_vault(args.authority, args.amount))


def cmd_credit(args: argparse.Namespace) -> int:
    """Deposit into a local custody account (airdrop or mint)."""
    service = _make_service(args.config, args.data)
    return _report(service.credit_account(Asset(args.asset), args.account, args.amount))


def cmd_sign_proof(args: argparse.Namespace) -> int:
    """Sign a points-deduction proof with the backend key."""
    try:
        signer = _load_backend_signer(args.env_file)
    except ValueError as e:
        print(f"Failed: {e}", file=sys.stderr)
        return 1

    expiry = args.expiry if args.expiry is not None else unix_now() + args.ttl
    try:
        proof = signer.sign_proof(args.user, args.points, args.nonce, expiry)
    except ValueError as e:
        print(f"Failed: {e}", file=sys.stderr)
        return 1

    document = json.dumps(proof.to_dict(), indent=2)
    if args.out:
        args.out.write_text(document + "\n", encoding="utf-8")
        print(f"Proof written to {args.out}")
    else:
        print(document)
    return 0


def cmd_commit(args: argparse.Namespace) -> int:
    try:
        proof = BackendProof.from_dict(json.loads(args.proof.read_text(encoding="utf-8")))
    except (OSError, KeyError, ValueError) as e:
        print(f"Failed: cannot read proof {args.proof}: {e}", file=sys.stderr)
        return 1
    service = _make_service(args.config, args.data)
    return _report(service.commit_with_proof(proof.user, proof, args.amount, now=args.now))


def cmd_claim(args: argparse.Namespace) -> int:
    service = _make_service(args.config, args.data)
    return _report(service.claim_tokens(args.user, now=args.now))


def cmd_withdraw(args: argparse.Namespace) -> int:
    service = _make_service(args.config, args.data)
    return _report(service.withdraw(args.authority, args.amount, now=args.now))


def cmd_check_invariants(args: argparse.Namespace) -> int:
    """Run config invariant checks, then audit the persisted ledger."""
    tools_dir = ROOT / "tools"
    sys.path.insert(0, str(tools_dir))
    from check_invariants import check

    exit_code = check(args.config)
    if exit_code != 0:
        return exit_code

    service = _make_service(args.config, args.data)
    violations = service.check_invariants()
    if violations:
        print("Ledger audit failed:")
        for violation in violations:
            print(f"- {violation}")
        return 1
    print("Ledger audit passed.")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="raiseledger",
        description="Raiseledger: funds commitment and token distribution CLI",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG,
        help="Path to config directory (default: config/)",
    )
    parser.add_argument(
        "--data",
        type=Path,
        default=DEFAULT_DATA,
        help="Path to data directory for state and events (default: data/)",
    )
    sub = parser.add_subparsers(dest="command")

    # status
    sub.add_parser("status", help="Show ledger status")

    # initialize
    p_init = sub.add_parser(
        "initialize",
        help="Create the distribution ledger; the authority pays the custody reserve",
    )
    p_init.add_argument("--authority", type=_identity, required=True, help="Authority identity")
    p_init.add_argument("--end-time", type=int, help="Commit end time (unix seconds)")
    p_init.add_argument("--rate", help="Raise units per point (Decimal, e.g. 0.0005)")
    p_init.add_argument("--target", type=int, help="Target raise in base units")

    # set-end-time
    p_end = sub.add_parser("set-end-time", help="Change the commit end time")
    p_end.add_argument("--authority", type=_identity, required=True)
    p_end.add_argument("--end-time", type=int, required=True, help="Unix seconds")

    # init-backend
    p_backend = sub.add_parser("init-backend", help="Register the backend signing key")
    p_backend.add_argument("--authority", type=_identity, required=True)
    p_backend.add_argument("--backend-pubkey", type=_identity, required=True)

    # set-backend-active
    p_active = sub.add_parser("set-backend-active", help="Enable or disable the backend")
    p_active.add_argument("--authority", type=_identity, required=True)
    p_active.add_argument("--active", type=_bool, required=True, help="true or false")

    # rotate-backend-key
    p_rotate = sub.add_parser("rotate-backend-key", help="Replace the backend signing key")
    p_rotate.add_argument("--authority", type=_identity, required=True)
    p_rotate.add_argument("--backend-pubkey", type=_identity, required=True)

    # create-vault
    p_vault = sub.add_parser("create-vault", help="Open the ledger-owned token vault")
    p_vault.add_argument("--authority", type=_identity, required=True)

    # fund-vault
    p_fund = sub.add_parser("fund-vault", help="Move tokens into the vault")
    p_fund.add_argument("--authority", type=_identity, required=True)
    p_fund.add_argument("--amount", type=int, required=True, help="Token base units")

    # credit
    p_credit = sub.add_parser("credit", help="Deposit into a local custody account")
    p_credit.add_argument("--asset", required=True, choices=[a.value for a in Asset])
    p_credit.add_argument("--account", type=_identity, required=True)
    p_credit.add_argument("--amount", type=int, required=True)

    # sign-proof
    p_sign = sub.add_parser("sign-proof", help="Sign a points-deduction proof")
    p_sign.add_argument("--user", type=_identity, required=True)
    p_sign.add_argument("--points", type=int, required=True)
    p_sign.add_argument("--nonce", type=int, required=True)
    p_sign.add_argument("--expiry", type=int, help="Unix seconds (default: now + ttl)")
    p_sign.add_argument("--ttl", type=int, default=300, help="Seconds until expiry (default: 300)")
    p_sign.add_argument("--out", type=Path, help="Write proof JSON to this file")
    p_sign.add_argument(
        "--env-file", type=Path, default=DEFAULT_ENV,
        help=f"dotenv file holding {BACKEND_KEY_VAR} (default: .env)",
    )

    # commit
    p_commit = sub.add_parser("commit", help="Commit raise currency under a signed proof")
    p_commit.add_argument("--proof", type=Path, required=True, help="Proof JSON from sign-proof")
    p_commit.add_argument("--amount", type=int, required=True, help="Contribution in base units")
    p_commit.add_argument("--now", type=int, help="Override clock (unix seconds)")

    # claim
    p_claim = sub.add_parser("claim", help="Claim the pro-rata token share")
    p_claim.add_argument("--user", type=_identity, required=True)
    p_claim.add_argument("--now", type=int, help="Override clock (unix seconds)")

    # withdraw
    p_withdraw = sub.add_parser("withdraw", help="Withdraw raised funds from custody")
    p_withdraw.add_argument("--authority", type=_identity, required=True)
    p_withdraw.add_argument("--amount", type=int, required=True)
    p_withdraw.add_argument("--now", type=int, help="Override clock (unix seconds)")

    # check-invariants
    sub.add_parser("check-invariants", help="Check config and audit ledger totals")

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    commands = {
        "status": cmd_status,
        "initialize": cmd_initialize,
        "set-end-time": cmd_set_end_time,
        "init-backend": cmd_init_backend,
        "set-backend-active": cmd_set_backend_active,
        "rotate-backend-key": cmd_rotate_backend_key,
        "create-vault": cmd_create_vault,
        "fund-vault": cmd_fund_vault,
        "credit": cmd_credit,
        "sign-proof": cmd_sign_proof,
        "commit": cmd_commit,
        "claim": cmd_claim,
        "withdraw": cmd_withdraw,
        "check-invariants": cmd_check_invariants,
    }

    handler = commands.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 1

    return handler(args)


if __name__ == "__main__":
    raise SystemExit(main())
