"""Marketplace policy configuration."""

from marketplace.policy.resolver import PolicyResolver

__all__ = ["PolicyResolver"]
