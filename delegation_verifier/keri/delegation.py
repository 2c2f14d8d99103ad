"""Multi-level KERI delegation validation.

Supports delegation chains: Delegator A -> Sub-Delegator B -> Identifier C

Delegated identifiers (dip events) name their delegator in the 'di' field
and are only established once the delegator anchors a seal of the dip
event. This module checks the 'di' reference and resolves the complete
chain back to a non-delegated root.
"""

import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional, Set

from delegation_verifier.core import config as settings

from .exceptions import DelegationInvalidError, KeriError
from .kel_parser import KEL
from .seal import find_seal, validate_seal

log = logging.getLogger(__name__)

# Async function(aid) -> loaded KEL
KelFetcher = Callable[[str], Awaitable[KEL]]


@dataclass
class DelegationChain:
    """Represents a resolved delegation chain.

    Attributes:
        delegates: List of AIDs from leaf to root delegator.
        root_aid: The non-delegated root identifier.
        anchor_sequences: Delegator sequence anchoring each hop, leaf first.
    """
    delegates: List[str] = field(default_factory=list)
    root_aid: Optional[str] = None
    anchor_sequences: List[int] = field(default_factory=list)

    @property
    def depth(self) -> int:
        return max(len(self.delegates) - 1, 0)


def check_delegator(delegate_kel: KEL, expected_delegator: Optional[str] = None) -> str:
    """Check that a KEL is delegated and names the expected delegator.

    Args:
        delegate_kel: The delegate's loaded KEL.
        expected_delegator: AID the caller expects in 'di', if known.

    Returns:
        The delegator AID from the delegated inception event.

    Raises:
        DelegationInvalidError: If the KEL is not delegated or 'di' differs.
    """
    if not delegate_kel.is_delegated:
        raise DelegationInvalidError(
            f"{delegate_kel.aid} is not a delegated identifier "
            f"(inception type {delegate_kel.inception.event_type.value})"
        )

    delegator_id = delegate_kel.delegator_id
    if expected_delegator and delegator_id != expected_delegator:
        raise DelegationInvalidError(
            f"Delegator mismatch: {delegate_kel.aid} names di={delegator_id}, "
            f"expected {expected_delegator}"
        )
    return delegator_id


async def resolve_delegation_chain(
    delegate_kel: KEL,
    fetch_kel: KelFetcher,
    verify_seals: bool = True,
    visited: Optional[Set[str]] = None,
    depth: int = 0,
) -> DelegationChain:
    """Recursively resolve a delegation chain to its non-delegated root.

    For each delegated identifier:
    1. Extract delegator AID from 'di' field
    2. Fetch the delegator's KEL
    3. Optionally check the delegator anchored the dip event
    4. If delegator is also delegated, recurse

    Args:
        delegate_kel: KEL of the delegated identifier.
        fetch_kel: Async function(aid) -> KEL.
        verify_seals: If True, every hop's seal must be present and match.
        visited: Set of AIDs visited (cycle detection).
        depth: Current recursion depth.

    Returns:
        DelegationChain from delegate to root.

    Raises:
        DelegationInvalidError: If the chain is circular, too deep, or a
            hop's seal is missing or mismatched.
        KeriError: If a delegator KEL cannot be fetched or loaded.
    """
    if depth >= settings.MAX_DELEGATION_DEPTH:
        raise DelegationInvalidError(
            f"Delegation chain exceeds max depth {settings.MAX_DELEGATION_DEPTH}"
        )

    visited = visited or set()
    aid = delegate_kel.aid
    if aid in visited:
        raise DelegationInvalidError(f"Circular delegation detected: {aid}")
    visited.add(aid)

    delegator_id = check_delegator(delegate_kel)
    log.debug(f"Resolving delegation: {aid[:20]}... -> {delegator_id[:20]}... (depth {depth})")

    delegator_kel = await fetch_kel(delegator_id)

    anchor_sequence = -1
    if verify_seals:
        inception = delegate_kel.inception
        try:
            match = find_seal(delegator_kel, aid, inception.sequence)
        except KeriError as e:
            raise DelegationInvalidError(f"Delegation hop {aid} -> {delegator_id}: {e.message}")
        validation = validate_seal(inception, match.seal)
        if not validation.valid:
            raise DelegationInvalidError(
                f"Delegation hop {aid} -> {delegator_id}: " + "; ".join(validation.reasons)
            )
        anchor_sequence = match.anchor_sequence

    if delegator_kel.is_delegated:
        parent_chain = await resolve_delegation_chain(
            delegator_kel, fetch_kel, verify_seals, visited, depth + 1
        )
        return DelegationChain(
            delegates=[aid] + parent_chain.delegates,
            root_aid=parent_chain.root_aid,
            anchor_sequences=[anchor_sequence] + parent_chain.anchor_sequences,
        )

    log.debug(f"Found delegation root: {delegator_id[:20]}...")
    return DelegationChain(
        delegates=[aid, delegator_id],
        root_aid=delegator_id,
        anchor_sequences=[anchor_sequence],
    )
