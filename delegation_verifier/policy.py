"""Caller-supplied trust policy.

A TrustPolicy carries every per-call trust decision: which delegator each
named counterparty must have, which root credential issuers are accepted,
and how strictly levels gate each other. It is immutable and passed into
each verification, so concurrent runs with different policies never share
state.
"""

import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import AbstractSet, Iterable, Mapping, Optional

from delegation_verifier.core import config as settings

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Counterparty:
    """A known agent and the identifier that must have delegated it."""
    name: str
    agent_aid: str
    delegator_aid: str


@dataclass(frozen=True)
class TrustPolicy:
    """Trust decisions for one or more verifications.

    Attributes:
        counterparties: Name -> Counterparty registry.
        trusted_root_issuers: Accepted root credential issuers (empty = any).
        strict_level_order: Any failing level skips every higher level.
        require_leaf_binding: Leaf credential issuee must be the delegator
            or the delegate.
    """
    counterparties: Mapping[str, Counterparty] = field(default_factory=dict)
    trusted_root_issuers: AbstractSet[str] = frozenset()
    strict_level_order: bool = False
    require_leaf_binding: bool = True

    def __post_init__(self):
        object.__setattr__(self, "counterparties", MappingProxyType(dict(self.counterparties)))
        object.__setattr__(self, "trusted_root_issuers", frozenset(self.trusted_root_issuers))

    @classmethod
    def default(cls, counterparties: Iterable[Counterparty] = ()) -> "TrustPolicy":
        """Policy seeded from environment configuration."""
        return cls(
            counterparties={c.name: c for c in counterparties},
            trusted_root_issuers=settings.TRUSTED_ROOT_ISSUERS,
            strict_level_order=settings.STRICT_LEVEL_ORDER,
            require_leaf_binding=settings.REQUIRE_LEAF_BINDING,
        )

    def lookup(self, name: str) -> Optional[Counterparty]:
        return self.counterparties.get(name)

    def expected_delegator(self, agent_aid: str) -> Optional[str]:
        """Delegator registered for an agent AID, if any counterparty names it."""
        for counterparty in self.counterparties.values():
            if counterparty.agent_aid == agent_aid:
                return counterparty.delegator_aid
        return None
