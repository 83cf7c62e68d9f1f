"""Policy and configuration loading."""

from raiseledger.policy.resolver import DeploymentDefaults, PolicyResolver

__all__ = ["DeploymentDefaults", "PolicyResolver"]
