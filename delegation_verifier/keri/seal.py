"""Delegation seal matching.

A delegation is only established once the delegator anchors a seal of the
delegate's event in one of its own interaction events:

    delegator ixn 'a': [{"i": <delegate AID>, "s": "0", "d": <dip SAID>}]

find_seal() locates the operative anchor in the delegator's KEL and
validate_seal() checks it against the delegate's event. The digest check is
the cryptographic proof of the delegation; any mismatch is a hard failure.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Tuple

from .exceptions import SealMismatchError, SealNotFoundError
from .kel_parser import KEL, KELEvent, Seal

log = logging.getLogger(__name__)


@dataclass
class SealMatch:
    """Operative delegation seal found in a delegator KEL.

    Attributes:
        seal: The earliest matching seal.
        anchor_sequence: Sequence of the interaction event carrying it.
        anchor_digest: Digest of that interaction event.
        duplicates: Later (sequence, seal) pairs anchoring the same target.
        warnings: Human-readable notes about duplicates.
    """
    seal: Seal
    anchor_sequence: int
    anchor_digest: str
    duplicates: List[Tuple[int, Seal]] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def has_conflict(self) -> bool:
        """True if a later anchor claims a different digest (possible duplicity)."""
        return any(s.target_digest != self.seal.target_digest for _, s in self.duplicates)


@dataclass(frozen=True)
class SealValidation:
    """Result of validating a seal against a delegate event.

    All three checks are independent and all must pass. Both digests are
    carried verbatim so callers can display the exact mismatch.
    """
    id_matches: bool
    sequence_matches: bool
    digest_matches: bool
    delegate_id: str
    seal_target_id: str
    dip_sequence: int
    seal_sequence: int
    dip_digest: str
    seal_digest: str

    @property
    def valid(self) -> bool:
        return self.id_matches and self.sequence_matches and self.digest_matches

    @property
    def reasons(self) -> List[str]:
        reasons = []
        if not self.id_matches:
            reasons.append(
                f"seal target {self.seal_target_id} != delegate {self.delegate_id}"
            )
        if not self.sequence_matches:
            reasons.append(
                f"seal sequence {self.seal_sequence} != event sequence {self.dip_sequence}"
            )
        if not self.digest_matches:
            reasons.append(
                f"seal digest {self.seal_digest} != event digest {self.dip_digest}"
            )
        return reasons

    def values(self) -> Dict[str, object]:
        """Raw compared values for reporting."""
        return {
            "dipDigest": self.dip_digest,
            "sealDigest": self.seal_digest,
            "dipSequence": self.dip_sequence,
            "sealSequence": self.seal_sequence,
            "delegateId": self.delegate_id,
            "sealTargetId": self.seal_target_id,
        }

    def raise_for_mismatch(self) -> None:
        """Raise SealMismatchError if any check failed."""
        if not self.valid:
            raise SealMismatchError(
                "Delegation seal mismatch: " + "; ".join(self.reasons),
                dip_digest=self.dip_digest,
                seal_digest=self.seal_digest,
            )


def find_seal(delegator_kel: KEL, delegate_id: str, delegate_sequence: int) -> SealMatch:
    """Find the operative delegation seal in a delegator's KEL.

    Scans interaction events in sequence order for an anchor whose target
    is (delegate_id, delegate_sequence). The lowest-sequence match is
    authoritative since a KEL is append-only; later matches are recorded
    as duplicates and surfaced as warnings.

    Args:
        delegator_kel: The delegator's loaded KEL.
        delegate_id: AID of the delegated identifier.
        delegate_sequence: Sequence of the delegate event being approved.

    Returns:
        SealMatch for the earliest anchor.

    Raises:
        SealNotFoundError: If no interaction event anchors the target.
    """
    match = None
    for event in delegator_kel.interactions():
        for seal in event.anchors:
            if seal.target_id != delegate_id or seal.target_sequence != delegate_sequence:
                continue
            if match is None:
                match = SealMatch(
                    seal=seal,
                    anchor_sequence=event.sequence,
                    anchor_digest=event.digest,
                )
            else:
                match.duplicates.append((event.sequence, seal))

    if match is None:
        log.warning(
            f"Delegation anchor for {delegate_id[:20]}... seq {delegate_sequence} "
            f"not found in delegator KEL {delegator_kel.aid[:20]}..."
        )
        raise SealNotFoundError(
            f"No interaction event in delegator {delegator_kel.aid} anchors "
            f"{delegate_id} at sequence {delegate_sequence}"
        )

    for sequence, seal in match.duplicates:
        if seal.target_digest != match.seal.target_digest:
            match.warnings.append(
                f"Conflicting delegation seal at delegator sequence {sequence}: "
                f"digest {seal.target_digest} differs from operative seal "
                f"{match.seal.target_digest} at sequence {match.anchor_sequence} "
                f"(possible duplicity)"
            )
        else:
            match.warnings.append(
                f"Duplicate delegation seal at delegator sequence {sequence}; "
                f"earliest anchor at sequence {match.anchor_sequence} is operative"
            )
    for warning in match.warnings:
        log.warning(warning)

    log.debug(
        f"Delegation anchor for {delegate_id[:20]}... found at delegator "
        f"seq {match.anchor_sequence}"
    )
    return match


def validate_seal(delegate_event: KELEvent, seal: Seal) -> SealValidation:
    """Validate a delegation seal against the delegate's event.

    Three independent exact-match checks:
    - seal.target_id == event owner
    - seal.target_sequence == event sequence
    - seal.target_digest == event digest

    Pure function: validating the same pair twice yields identical results.
    """
    return SealValidation(
        id_matches=seal.target_id == delegate_event.owner_id,
        sequence_matches=seal.target_sequence == delegate_event.sequence,
        digest_matches=seal.target_digest == delegate_event.digest,
        delegate_id=delegate_event.owner_id,
        seal_target_id=seal.target_id,
        dip_sequence=delegate_event.sequence,
        seal_sequence=seal.target_sequence,
        dip_digest=delegate_event.digest,
        seal_digest=seal.target_digest,
    )
