"""Invalidation policies: leases, cascade, field policies and sweeping."""

from policycache.policies.config import PolicyConfig, ResolvedPolicy, TypePolicy
from policycache.policies.fields import (
    FieldMergeOptions,
    FieldPolicy,
    FieldPolicyKind,
    FieldPolicyRegistry,
    FieldReadOptions,
    relay_style_pagination,
)
from policycache.policies.manager import (
    FieldInvalidation,
    PolicyManager,
    SweepResult,
    system_clock,
)
from policycache.policies.sweeper import ExpirationSweeper

__all__ = [
    # Config
    "PolicyConfig",
    "TypePolicy",
    "ResolvedPolicy",
    # Field policies
    "FieldPolicy",
    "FieldPolicyKind",
    "FieldPolicyRegistry",
    "FieldReadOptions",
    "FieldMergeOptions",
    "relay_style_pagination",
    # Manager
    "PolicyManager",
    "FieldInvalidation",
    "SweepResult",
    "system_clock",
    "ExpirationSweeper",
]
