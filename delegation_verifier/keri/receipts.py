"""Witness receipt collection.

Receipts arrive from up to |witnesses| independent sources with variable
latency. gather_receipts() queries every known witness in parallel and
stops waiting as soon as the outcome is decided:

- quorum reached (distinct valid receipts >= threshold), or
- quorum impossible (more witnesses finished without a receipt than
  |witnesses| - threshold), or
- the overall deadline expires.

A per-witness timeout is a non-fatal absence. Still-pending queries are
cancelled on exit; anything they would have returned is ignored. There is
no retry policy here; retries belong to the caller.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Set, Tuple

from delegation_verifier.core import config as settings

from .kel_parser import KELEvent, WitnessConfig, WitnessReceipt, parse_witness_receipt
from .witness import QuorumResult, evaluate_quorum

log = logging.getLogger(__name__)

# Query for a single witness: witness AID -> raw receipts it holds for the event
WitnessQuery = Callable[[str], Awaitable[List[Dict[str, Any]]]]

# Why gathering stopped before every witness answered
STOP_QUORUM = "quorum"
STOP_IMPOSSIBLE = "impossible"
STOP_DEADLINE = "deadline"

OUTCOME_RESPONDED = "responded"
OUTCOME_TIMEOUT = "timeout"
OUTCOME_FAILED = "failed"


@dataclass
class GatherResult:
    """Outcome of a receipt gather.

    Attributes:
        quorum: Final quorum evaluation over every receipt collected.
        receipts: Parsed receipts collected before stopping.
        responded: Witnesses that answered within their timeout.
        timed_out: Witnesses whose query exceeded the per-witness timeout.
        failed: Witnesses whose query raised.
        cancelled: Witnesses still pending when gathering stopped.
        stopped: STOP_QUORUM, STOP_IMPOSSIBLE, STOP_DEADLINE, or None if
            every witness answered.
        elapsed: Seconds spent gathering.
        warnings: Malformed-receipt and deadline notes.
    """
    quorum: QuorumResult
    receipts: List[WitnessReceipt] = field(default_factory=list)
    responded: List[str] = field(default_factory=list)
    timed_out: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    cancelled: List[str] = field(default_factory=list)
    stopped: Optional[str] = None
    elapsed: float = 0.0
    warnings: List[str] = field(default_factory=list)

    @property
    def deadline_exceeded(self) -> bool:
        return self.stopped == STOP_DEADLINE


def parse_receipts(raw_receipts: Iterable[Any]) -> Tuple[List[WitnessReceipt], List[str]]:
    """Parse raw receipts, discarding malformed ones.

    Returns:
        Tuple of (receipts, warnings).
    """
    receipts = []
    warnings = []
    for raw in raw_receipts or []:
        try:
            receipts.append(parse_witness_receipt(raw))
        except ValueError as e:
            message = f"Malformed witness receipt discarded: {e}"
            log.warning(message)
            warnings.append(message)
    return receipts, warnings


def _counts_for(receipt: WitnessReceipt, event: KELEvent, config: WitnessConfig) -> bool:
    return (
        receipt.event_digest == event.digest
        and receipt.sequence == event.sequence
        and receipt.witness_id in config.witness_ids
    )


async def gather_receipts(
    event: KELEvent,
    config: WitnessConfig,
    query: WitnessQuery,
    per_witness_timeout: Optional[float] = None,
    deadline: Optional[float] = None,
) -> GatherResult:
    """Scatter receipt queries to all witnesses and gather until decided.

    Args:
        event: The event whose receipts are wanted.
        config: Witness pool and threshold for the event.
        query: Async function(witness_aid) -> list of raw receipts.
        per_witness_timeout: Seconds allowed per witness query.
        deadline: Overall seconds allowed for the gather.

    Returns:
        GatherResult; never raises for slow or failing witnesses.
    """
    if per_witness_timeout is None:
        per_witness_timeout = settings.WITNESS_QUERY_TIMEOUT_SECONDS
    if deadline is None:
        deadline = settings.RECEIPT_DEADLINE_SECONDS

    loop = asyncio.get_running_loop()
    started = loop.time()

    if config.threshold == 0:
        # Nothing to wait for
        return GatherResult(quorum=evaluate_quorum(event, [], config))

    async def query_single(witness_id: str):
        """Query a single witness; failures are absences, not errors."""
        try:
            raw = await asyncio.wait_for(query(witness_id), timeout=per_witness_timeout)
            return witness_id, OUTCOME_RESPONDED, raw or []
        except asyncio.TimeoutError:
            log.debug(f"Witness {witness_id[:16]}... timed out after {per_witness_timeout}s")
            return witness_id, OUTCOME_TIMEOUT, []
        except Exception as e:
            log.debug(f"Witness {witness_id[:16]}... query failed: {e}")
            return witness_id, OUTCOME_FAILED, []

    tasks = {
        asyncio.create_task(query_single(witness_id)): witness_id
        for witness_id in sorted(config.witness_ids)
    }
    pending = set(tasks)
    result = GatherResult(quorum=None)
    valid: Set[str] = set()
    finished: Set[str] = set()
    max_misses = len(config.witness_ids) - config.threshold

    try:
        while pending:
            remaining = deadline - (loop.time() - started)
            if remaining <= 0:
                result.stopped = STOP_DEADLINE
                break

            done, pending = await asyncio.wait(
                pending, timeout=remaining, return_when=asyncio.FIRST_COMPLETED
            )
            if not done:
                result.stopped = STOP_DEADLINE
                break

            for task in done:
                witness_id, outcome, raw = task.result()
                finished.add(witness_id)
                if outcome == OUTCOME_TIMEOUT:
                    result.timed_out.append(witness_id)
                    continue
                if outcome == OUTCOME_FAILED:
                    result.failed.append(witness_id)
                    continue
                result.responded.append(witness_id)
                receipts, warnings = parse_receipts(raw)
                result.receipts.extend(receipts)
                result.warnings.extend(warnings)
                valid.update(r.witness_id for r in receipts if _counts_for(r, event, config))

            if len(valid) >= config.threshold:
                result.stopped = STOP_QUORUM
                break
            if len(finished - valid) > max_misses:
                result.stopped = STOP_IMPOSSIBLE
                break
    finally:
        for task in pending:
            task.cancel()
        result.cancelled = sorted(tasks[task] for task in pending)
        if pending:
            # Let cancellations run; their results are never read
            await asyncio.sleep(0)

    if result.stopped and result.stopped != STOP_QUORUM and pending:
        log.debug(
            f"Stopped gathering receipts for {event.owner_id[:16]}... ({result.stopped}); "
            f"cancelled {len(pending)} pending queries"
        )

    result.elapsed = loop.time() - started
    result.quorum = evaluate_quorum(event, result.receipts, config)
    if result.deadline_exceeded and not result.quorum.satisfied:
        message = (
            f"Receipt deadline of {deadline}s exceeded with "
            f"received={result.quorum.received}, threshold={config.threshold}"
        )
        log.warning(message)
        result.warnings.append(message)

    log.info(
        f"Receipts for {event.owner_id[:16]}... seq {event.sequence}: "
        f"{result.quorum.received}/{config.threshold} from "
        f"{len(result.responded)}/{len(config.witness_ids)} witnesses"
    )
    return result
