"""Invalidation policy configuration.

Process-wide defaults plus per-type overrides:

    PolicyConfig(
        ttl_ms=10_000,
        renewal_policy=RenewalPolicy.WRITE_ONLY,
        types={
            "Film": TypePolicy(ttl_ms=60_000),
            "Query": TypePolicy(never_expires=True),
        },
    )
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from policycache.core.errors import ConfigurationError
from policycache.core.types import RenewalPolicy

if TYPE_CHECKING:
    from policycache.config import Settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TypePolicy:
    """Per-type override of the default lease.

    Attributes:
        ttl_ms: Lease duration; None inherits the default
        renewal_policy: Renewal rule; None inherits the default
        never_expires: Entities of this type never go stale by TTL
    """

    ttl_ms: int | None = None
    renewal_policy: RenewalPolicy | None = None
    never_expires: bool = False


@dataclass(frozen=True)
class ResolvedPolicy:
    """Effective lease settings for one typename."""

    ttl_ms: int | None
    renewal_policy: RenewalPolicy


@dataclass(frozen=True)
class PolicyConfig:
    """Default lease settings and per-type overrides.

    Attributes:
        ttl_ms: Default lease duration; None never expires
        renewal_policy: Default renewal rule
        types: Overrides keyed by typename
    """

    ttl_ms: int | None = None
    renewal_policy: RenewalPolicy = RenewalPolicy.WRITE_ONLY
    types: Mapping[str, TypePolicy] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.ttl_ms is not None and self.ttl_ms < 0:
            raise ConfigurationError(f"ttl_ms must be non-negative, got {self.ttl_ms}")
        for typename, policy in self.types.items():
            if policy.ttl_ms is not None and policy.ttl_ms < 0:
                raise ConfigurationError(
                    f"ttl_ms for type {typename!r} must be non-negative, got {policy.ttl_ms}"
                )

    def resolve(self, typename: str | None) -> ResolvedPolicy:
        """Effective policy for a typename (None uses the defaults)."""
        override = self.types.get(typename) if typename else None
        if override is None:
            return ResolvedPolicy(ttl_ms=self.ttl_ms, renewal_policy=self.renewal_policy)

        if override.never_expires:
            ttl_ms = None
        elif override.ttl_ms is not None:
            ttl_ms = override.ttl_ms
        else:
            ttl_ms = self.ttl_ms

        return ResolvedPolicy(
            ttl_ms=ttl_ms,
            renewal_policy=override.renewal_policy or self.renewal_policy,
        )

    @classmethod
    def from_settings(
        cls, settings: Settings, types: Mapping[str, TypePolicy] | None = None
    ) -> PolicyConfig:
        """Build the config from environment settings."""
        return cls(
            ttl_ms=settings.default_ttl_ms,
            renewal_policy=settings.default_renewal_policy,
            types=dict(types or {}),
        )

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> PolicyConfig:
        """Build the config from a plain mapping.

        Accepts both snake_case keys and the camelCase keys of the JS option
        object ({"timeToLive": 10000, "renewalPolicy": "write-only",
        "types": {"Film": {"timeToLive": 5000}}}).

        Raises:
            ConfigurationError: If a renewal policy value is unknown
        """

        def ttl(values: Mapping[str, Any]) -> int | None:
            value = values.get("ttl_ms", values.get("timeToLive"))
            return int(value) if value is not None else None

        def renewal(values: Mapping[str, Any]) -> RenewalPolicy | None:
            value = values.get("renewal_policy", values.get("renewalPolicy"))
            if value is None:
                return None
            try:
                return RenewalPolicy(value)
            except ValueError as e:
                raise ConfigurationError(f"Unknown renewal policy {value!r}") from e

        types = {
            typename: TypePolicy(
                ttl_ms=ttl(values),
                renewal_policy=renewal(values),
                never_expires=bool(values.get("never_expires", values.get("neverExpires", False))),
            )
            for typename, values in (data.get("types") or {}).items()
        }
        config = cls(
            ttl_ms=ttl(data),
            renewal_policy=renewal(data) or RenewalPolicy.WRITE_ONLY,
            types=types,
        )
        logger.debug(f"Loaded invalidation policies for {len(types)} types")
        return config
