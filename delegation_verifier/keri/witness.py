"""Witness quorum evaluation.

Counts distinct witness receipts for an event against the declared
threshold (toad). Only receipts that name the event's digest and come from
a witness in the declared pool are counted; a witness receipting twice
counts once.
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Set

from .exceptions import InsufficientQuorumError
from .kel_parser import KELEvent, WitnessConfig, WitnessReceipt

log = logging.getLogger(__name__)


@dataclass
class QuorumResult:
    """Outcome of a quorum evaluation.

    Attributes:
        satisfied: True if distinct valid receipts reach the threshold.
        received: Count of distinct valid witnesses.
        threshold: Declared threshold.
        witness_count: Size of the declared witness pool.
        witnesses: Sorted AIDs of the witnesses counted.
        discarded: Receipts that were not counted (wrong event or unknown witness).
        duplicates: Extra receipts from already-counted witnesses.
        warnings: Human-readable notes for the report.
    """
    satisfied: bool
    received: int
    threshold: int
    witness_count: int
    witnesses: List[str] = field(default_factory=list)
    discarded: int = 0
    duplicates: int = 0
    warnings: List[str] = field(default_factory=list)

    def raise_for_quorum(self) -> None:
        """Raise InsufficientQuorumError if the threshold was not reached."""
        if not self.satisfied:
            raise InsufficientQuorumError(received=self.received, threshold=self.threshold)


def evaluate_quorum(
    event: KELEvent,
    receipts: Iterable[WitnessReceipt],
    config: WitnessConfig,
) -> QuorumResult:
    """Evaluate witness receipts for an event against a witness config.

    Receipts are discarded if they name a different digest or sequence, or
    come from a witness outside config.witness_ids. Unknown witnesses are
    logged as a warning; they are not duplicity evidence on their own.

    Args:
        event: The receipted event.
        receipts: Candidate receipts (any source, any order).
        config: Declared witness pool and threshold.

    Returns:
        QuorumResult with satisfied = distinct valid witnesses >= threshold.
    """
    counted: Set[str] = set()
    unknown: Set[str] = set()
    discarded = 0
    duplicates = 0
    warnings: List[str] = []

    for receipt in receipts:
        if receipt.event_digest != event.digest or receipt.sequence != event.sequence:
            discarded += 1
            log.debug(
                f"Discarding receipt from {receipt.witness_id[:16]}... for "
                f"{receipt.event_digest[:16]}... seq {receipt.sequence}: not this event"
            )
            continue
        if receipt.witness_id not in config.witness_ids:
            discarded += 1
            unknown.add(receipt.witness_id)
            continue
        if receipt.witness_id in counted:
            duplicates += 1
            continue
        counted.add(receipt.witness_id)

    for witness_id in sorted(unknown):
        message = f"Receipt from unrecognised witness {witness_id} ignored"
        log.warning(message)
        warnings.append(message)

    if config.threshold == 0:
        message = (
            f"Witness threshold is 0 for event seq {event.sequence}: "
            f"no witness consensus is required"
        )
        log.warning(message)
        warnings.append(message)

    result = QuorumResult(
        satisfied=len(counted) >= config.threshold,
        received=len(counted),
        threshold=config.threshold,
        witness_count=len(config.witness_ids),
        witnesses=sorted(counted),
        discarded=discarded,
        duplicates=duplicates,
        warnings=warnings,
    )
    log.debug(
        f"Quorum for {event.owner_id[:16]}... seq {event.sequence}: "
        f"{result.received}/{result.threshold} (satisfied={result.satisfied})"
    )
    return result
