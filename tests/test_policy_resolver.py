"""Tests for the policy resolver — config loads and fails closed."""

import copy
import json
from pathlib import Path

import pytest

from raiseledger.policy.resolver import POLICY_FILENAME, PolicyResolver

CONFIG_DIR = Path(__file__).resolve().parents[1] / "config"


@pytest.fixture
def policy() -> dict:
    with (CONFIG_DIR / POLICY_FILENAME).open("r", encoding="utf-8") as handle:
        return json.load(handle)


class TestShippedConfig:
    def test_loads(self) -> None:
        resolver = PolicyResolver.from_config_dir(CONFIG_DIR)
        assert resolver.signature_verifier_program_id() == (
            "Ed25519SigVerify111111111111111111111111111"
        )
        assert resolver.reserve_minimum() == 1_517_280
        assert resolver.claims_require_closed_raise() is False

    def test_deployment_defaults(self) -> None:
        defaults = PolicyResolver.from_config_dir(CONFIG_DIR).deployment_defaults()
        assert defaults.rate == 500_000
        assert defaults.commit_window_seconds == 7 * 24 * 3600
        assert defaults.target_raise == 100_000_000_000


class TestFailClosed:
    def test_missing_section(self, policy: dict) -> None:
        del policy["custody"]
        with pytest.raises(ValueError, match="custody.reserve_minimum"):
            PolicyResolver(policy)

    def test_bool_is_not_int(self, policy: dict) -> None:
        policy["custody"]["reserve_minimum"] = True
        with pytest.raises(ValueError, match="must be int"):
            PolicyResolver(policy)

    def test_int_is_not_bool(self, policy: dict) -> None:
        policy["claims"]["require_closed_raise"] = 1
        with pytest.raises(ValueError, match="must be bool"):
            PolicyResolver(policy)

    def test_rate_must_be_exact(self, policy: dict) -> None:
        policy["deployment"]["rate"] = "0.0000000001"
        with pytest.raises(ValueError, match="not representable"):
            PolicyResolver(policy)

    def test_rate_must_parse(self, policy: dict) -> None:
        policy["deployment"]["rate"] = "half"
        with pytest.raises(ValueError, match="Invalid deployment.rate"):
            PolicyResolver(policy)

    def test_window_must_be_positive(self, policy: dict) -> None:
        policy["deployment"]["commit_window_seconds"] = 0
        with pytest.raises(ValueError, match="positive"):
            PolicyResolver(policy)

    def test_claim_gating_can_be_enabled(self, policy: dict) -> None:
        gated = copy.deepcopy(policy)
        gated["claims"]["require_closed_raise"] = True
        assert PolicyResolver(gated).claims_require_closed_raise() is True
