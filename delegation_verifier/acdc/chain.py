"""Credential trust chain traversal.

Walks a credential graph breadth-first from a leaf credential, following
every declared edge and validating each hop, until credentials with no
edges (roots) are reached.

Chains are not valid "on average": the first invalid hop fails the chain,
and every hop still reachable after it is reported as skipped rather than
passed.
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import AbstractSet, Any, Dict, List, Mapping, Optional

from delegation_verifier.api_models import CheckStatus, ErrorCode
from delegation_verifier.core import config as settings
from delegation_verifier.keri.kel_parser import KEL

from .edges import EdgeValidation, validate_edge
from .exceptions import ACDCChainInvalid
from .models import Credential

log = logging.getLogger(__name__)


@dataclass
class HopResult:
    """One traversed edge.

    Attributes:
        index: 1-based position in traversal order.
        depth: Distance of the parent from the leaf.
        edge_name: Edge name in the child's 'e' block.
        child_said: Credential declaring the edge.
        parent_said: SAID the edge references.
        status: PASS, FAIL or SKIPPED.
        reason: Failure or skip reason.
        validation: Edge validation result (None if never validated).
    """
    index: int
    depth: int
    edge_name: str
    child_said: str
    parent_said: str
    status: CheckStatus
    reason: Optional[str] = None
    validation: Optional[EdgeValidation] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hop": self.index,
            "edge": self.edge_name,
            "child": self.child_said,
            "parent": self.parent_said,
            "status": self.status.value,
            "reason": self.reason,
        }


@dataclass
class ChainValidation:
    """Result of walking a credential chain.

    Attributes:
        leaf_said: Starting credential.
        valid: True if every hop passed and every root is acceptable.
        path: Credential SAIDs reached through valid hops, in traversal order.
        roots: Root credential SAIDs reached.
        hops: Every edge seen, in traversal order.
        failed_hop: The hop that failed the chain, if any.
        reason: Failure reason.
        code: ErrorCode for the failure.
    """
    leaf_said: str
    valid: bool = False
    path: List[str] = field(default_factory=list)
    roots: List[str] = field(default_factory=list)
    hops: List[HopResult] = field(default_factory=list)
    failed_hop: Optional[HopResult] = None
    reason: Optional[str] = None
    code: Optional[str] = None

    @property
    def passed_hops(self) -> List[HopResult]:
        return [h for h in self.hops if h.status == CheckStatus.PASS]

    @property
    def skipped_hops(self) -> List[HopResult]:
        return [h for h in self.hops if h.status == CheckStatus.SKIPPED]

    def raise_for_chain(self) -> None:
        """Raise ACDCChainInvalid if the chain is invalid."""
        if not self.valid:
            raise ACDCChainInvalid(self.reason or "Credential chain invalid")


def _reaches(known: Mapping[str, Credential], start: str, target: str) -> bool:
    """True if target is reachable from start by following edges.

    An edge child -> parent closes a cycle exactly when the child is
    reachable from the parent.
    """
    stack = [start]
    seen = set()
    while stack:
        said = stack.pop()
        if said == target:
            return True
        if said in seen or said not in known:
            continue
        seen.add(said)
        stack.extend(e.parent_said for e in known[said].edges.values())
    return False


def walk_chain(
    leaf: Credential,
    graph: Mapping[str, Credential],
    kels: Optional[Mapping[str, KEL]] = None,
    trusted_roots: AbstractSet[str] = frozenset(),
    max_depth: Optional[int] = None,
) -> ChainValidation:
    """Validate the credential chain from a leaf to its root(s).

    Args:
        leaf: Credential to start from.
        graph: SAID -> Credential for every available credential.
        kels: AID -> KEL for issuers that DI2I edges may depend on.
        trusted_roots: If non-empty, root credentials must be issued by one
            of these AIDs.
        max_depth: Maximum hops from the leaf (default MAX_CHAIN_DEPTH).

    Returns:
        ChainValidation with per-hop results.
    """
    if max_depth is None:
        max_depth = settings.MAX_CHAIN_DEPTH

    known = dict(graph)
    known.setdefault(leaf.said, leaf)

    result = ChainValidation(leaf_said=leaf.said, path=[leaf.said])
    queue = deque([(leaf, 0)])
    visited = {leaf.said}

    while queue:
        credential, depth = queue.popleft()

        if credential.is_root:
            if result.failed_hop is None:
                result.roots.append(credential.said)
            continue

        for edge_name, edge in credential.edges.items():
            parent = known.get(edge.parent_said)
            hop = HopResult(
                index=len(result.hops) + 1,
                depth=depth + 1,
                edge_name=edge_name,
                child_said=credential.said,
                parent_said=edge.parent_said,
                status=CheckStatus.PASS,
            )
            result.hops.append(hop)

            if result.failed_hop is not None:
                hop.status = CheckStatus.SKIPPED
                hop.reason = f"not checked: hop {result.failed_hop.index} failed"
            elif parent is None:
                hop.status = CheckStatus.FAIL
                hop.reason = (
                    f"Edge '{edge_name}' of {credential.said} references "
                    f"credential {edge.parent_said} which was not found"
                )
            elif parent.said in visited and _reaches(known, parent.said, credential.said):
                hop.status = CheckStatus.FAIL
                hop.reason = (
                    f"Edge '{edge_name}' of {credential.said} points back to "
                    f"{parent.said} (circular chain)"
                )
            elif depth + 1 > max_depth:
                hop.status = CheckStatus.FAIL
                hop.reason = f"Credential chain exceeds max depth {max_depth}"
            else:
                hop.validation = validate_edge(credential, edge_name, parent, kels)
                if not hop.validation.valid:
                    hop.status = CheckStatus.FAIL
                    hop.reason = hop.validation.reason

            if hop.status == CheckStatus.FAIL:
                result.failed_hop = hop
                result.reason = f"hop {hop.index}: {hop.reason}"
                result.code = (
                    ErrorCode.CREDENTIAL_NOT_FOUND if parent is None else ErrorCode.INVALID_EDGE
                )

            if parent is not None and parent.said not in visited:
                visited.add(parent.said)
                if hop.status == CheckStatus.PASS:
                    result.path.append(parent.said)
                queue.append((parent, depth + 1))

    if result.failed_hop is not None:
        log.info(f"Credential chain from {leaf.said[:20]}... failed at {result.reason}")
        return result

    if not result.roots:
        result.reason = f"No root credential reachable from {leaf.said} (circular chain)"
        result.code = ErrorCode.INVALID_EDGE
        return result

    if trusted_roots:
        for root_said in result.roots:
            root = known[root_said]
            if root.issuer_aid not in trusted_roots:
                result.reason = (
                    f"Root credential {root_said} issued by {root.issuer_aid}, "
                    f"which is not a trusted root issuer"
                )
                result.code = ErrorCode.INVALID_EDGE
                return result

    result.valid = True
    log.debug(
        f"Credential chain from {leaf.said[:20]}... valid: "
        f"{len(result.hops)} hops, roots={result.roots}"
    )
    return result
