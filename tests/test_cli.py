"""Tests for the raiseledger CLI — proves commands dispatch and persist."""

import json
from pathlib import Path

import pytest

from raiseledger.cli import build_parser, main
from raiseledger.crypto.proof import BackendSigner

SEED = bytes(range(1, 33))
AUTHORITY = ("aa" * 32)
ALICE = ("01" * 32)

NOW = 1_700_000_000
END = 2_000_000_000


class TestCLIParsing:
    def test_status_command(self) -> None:
        args = build_parser().parse_args(["status"])
        assert args.command == "status"

    def test_identity_parsed_as_bytes(self) -> None:
        args = build_parser().parse_args(["claim", "--user", ALICE])
        assert args.user == bytes.fromhex(ALICE)

    def test_identity_must_be_32_bytes(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args(["claim", "--user", "abcd"])

    def test_backend_active_flag(self) -> None:
        args = build_parser().parse_args([
            "set-backend-active", "--authority", AUTHORITY, "--active", "false",
        ])
        assert args.active is False

    def test_credit_asset_choices(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args([
                "credit", "--asset", "gold", "--account", ALICE, "--amount", "1",
            ])


class TestCLIExecution:
    def test_no_command_shows_help(self, capsys) -> None:
        assert main([]) == 0

    def test_status_runs(self, tmp_path: Path, capsys) -> None:
        assert main(["--data", str(tmp_path), "status"]) == 0
        status = json.loads(capsys.readouterr().out)
        assert status["phase"] == "uninitialized"

    def test_failure_exit_code(self, tmp_path: Path, capsys) -> None:
        assert main(["--data", str(tmp_path), "claim", "--user", ALICE]) == 1
        assert "NotInitialized" in capsys.readouterr().err

    def test_sign_proof_requires_key(self, tmp_path: Path, monkeypatch) -> None:
        monkeypatch.delenv("BACKEND_PRIVATE_KEY", raising=False)
        exit_code = main([
            "--data", str(tmp_path), "sign-proof",
            "--user", ALICE, "--points", "1", "--nonce", "1",
            "--env-file", str(tmp_path / ".env"),
        ])
        assert exit_code == 1

    def test_full_lifecycle(self, tmp_path: Path, monkeypatch, capsys) -> None:
        data = tmp_path / "data"
        env_file = tmp_path / ".env"
        env_file.write_text(f"BACKEND_PRIVATE_KEY={SEED.hex()}\n", encoding="utf-8")
        # setenv registers teardown for the value load_dotenv will write
        monkeypatch.setenv("BACKEND_PRIVATE_KEY", "unset")
        monkeypatch.delenv("BACKEND_PRIVATE_KEY")
        backend_pubkey = BackendSigner.from_secret(SEED).public_key.hex()
        proof_path = tmp_path / "proof.json"

        def run(*argv: str) -> int:
            return main(["--data", str(data), *argv])

        assert run(
            "credit", "--asset", "native", "--account", AUTHORITY, "--amount", "1517280",
        ) == 0
        assert run(
            "initialize", "--authority", AUTHORITY,
            "--end-time", str(END), "--rate", "0.0005", "--target", "10000",
        ) == 0
        assert run("init-backend", "--authority", AUTHORITY, "--backend-pubkey", backend_pubkey) == 0
        assert run("create-vault", "--authority", AUTHORITY) == 0
        assert run("credit", "--asset", "token", "--account", AUTHORITY, "--amount", "1000") == 0
        assert run("fund-vault", "--authority", AUTHORITY, "--amount", "1000") == 0
        assert run("credit", "--asset", "native", "--account", ALICE, "--amount", "500") == 0
        assert run(
            "sign-proof", "--user", ALICE, "--points", "2000", "--nonce", "1",
            "--expiry", str(END + 600), "--out", str(proof_path),
            "--env-file", str(env_file),
        ) == 0
        assert json.loads(proof_path.read_text(encoding="utf-8"))["nonce"] == "1"

        assert run("commit", "--proof", str(proof_path), "--amount", "100", "--now", str(NOW)) == 0
        # Same proof again is a replay.
        assert run("commit", "--proof", str(proof_path), "--amount", "100", "--now", str(NOW)) == 1

        assert run("claim", "--user", ALICE, "--now", str(NOW)) == 0
        assert run("claim", "--user", ALICE, "--now", str(END)) == 1
        assert run("withdraw", "--authority", AUTHORITY, "--amount", "100", "--now", str(NOW)) == 1
        assert run("withdraw", "--authority", AUTHORITY, "--amount", "100", "--now", str(END)) == 0
        assert run("withdraw", "--authority", AUTHORITY, "--amount", "1", "--now", str(END)) == 1

        capsys.readouterr()
        assert run("status") == 0
        status = json.loads(capsys.readouterr().out)
        assert status["distribution"]["total_raised"] == 100
        assert status["commitments"] == {"total": 1, "claimed": 1}
        assert status["custody"]["vault_balance"] == 0
        assert status["custody"]["raised_balance"] == 0
        assert status["custody"]["reserve"] == 1_517_280

        assert run("check-invariants") == 0
