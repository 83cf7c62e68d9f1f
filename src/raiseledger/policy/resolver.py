"""Policy resolver — typed access to config/distribution_policy.json.

Configuration holds deployment parameters and operational policy only.
Wire-contract constants (proof domain tag, record layouts, rate scale) are
code, not config.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

from raiseledger.distribution.prorata import rate_from_decimal
from raiseledger.models.ledger import require_u64

POLICY_FILENAME = "distribution_policy.json"


@dataclass(frozen=True)
class DeploymentDefaults:
    """Parameters used when initializing a new distribution."""
    commit_window_seconds: int
    rate: int  # scaled by RATE_SCALE
    target_raise: int


class PolicyResolver:
    """Resolves policy values, failing closed on missing or invalid keys.

    Usage:
        resolver = PolicyResolver.from_config_dir(Path("config"))
        minimum = resolver.reserve_minimum()
    """

    def __init__(self, policy: dict[str, Any]) -> None:
        self._policy = policy
        # Resolve everything once so a bad config fails at load time.
        self._verifier_id = self._require(str, "signature_verifier", "program_id")
        self._reserve_minimum = require_u64(
            self._require(int, "custody", "reserve_minimum"), "custody.reserve_minimum"
        )
        self._require_closed = self._require(bool, "claims", "require_closed_raise")
        self._deployment = self._load_deployment()

    @classmethod
    def from_config_dir(cls, config_dir: Path) -> PolicyResolver:
        path = Path(config_dir) / POLICY_FILENAME
        with path.open("r", encoding="utf-8") as handle:
            return cls(json.load(handle))

    def signature_verifier_program_id(self) -> str:
        return self._verifier_id

    def reserve_minimum(self) -> int:
        """Custody balance that withdrawals must always leave behind."""
        return self._reserve_minimum

    def claims_require_closed_raise(self) -> bool:
        return self._require_closed

    def deployment_defaults(self) -> DeploymentDefaults:
        return self._deployment

    def _load_deployment(self) -> DeploymentDefaults:
        raw_rate = self._require(str, "deployment", "rate")
        try:
            rate = rate_from_decimal(Decimal(raw_rate))
        except InvalidOperation as e:
            raise ValueError(f"Invalid deployment.rate: {raw_rate!r}") from e
        window = self._require(int, "deployment", "commit_window_seconds")
        if window <= 0:
            raise ValueError("deployment.commit_window_seconds must be positive")
        return DeploymentDefaults(
            commit_window_seconds=window,
            rate=rate,
            target_raise=require_u64(
                self._require(int, "deployment", "target_raise"), "deployment.target_raise"
            ),
        )

    def _require(self, kind: type, section: str, key: str) -> Any:
        try:
            value = self._policy[section][key]
        except (KeyError, TypeError) as e:
            raise ValueError(f"Missing policy value: {section}.{key}") from e
        # bool is an int subclass; keep the two apart.
        if not isinstance(value, kind) or (kind is int and isinstance(value, bool)):
            raise ValueError(
                f"Policy value {section}.{key} must be {kind.__name__}, "
                f"got {type(value).__name__}"
            )
        return value
