"""Delegation verification orchestrator.

Runs the verification levels in order and assembles a Report:

1. basic_reference     - delegate KEL is a delegated inception naming the
                         expected delegator, and the delegator KEL loads
2. seal_cryptography   - delegator anchored a seal matching the dip event
3. witness_consensus   - enough distinct witnesses receipted the dip event
4. credential_chain    - leaf credential chains to an acceptable root
5. state_consistency   - primary and secondary views of the delegate agree
6. message_signature   - supplied message verifies against current keys

A failed basic_reference check skips every other level. With
policy.strict_level_order any failed level skips every higher one.

Lower components return typed results or raise domain exceptions; only
this module maps them to pass/fail/warn. Unexpected exceptions become an
INTERNAL_ERROR failure on the level that raised them, never a crash.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from .acdc import (
    ACDCError,
    Credential,
    CredentialNotFoundError,
    EdgeOperator,
    parse_credential,
    walk_chain,
)
from .api_models import (
    ERROR_RECOVERABILITY,
    LEVEL_ORDER,
    CheckStatus,
    ErrorCode,
    LevelResult,
    Report,
    VerificationLevel,
    derive_overall_status,
)
from .core import config as settings
from .logging_config import verification_context
from .keri import (
    KEL,
    KeriError,
    MalformedLogError,
    SignatureVerifier,
    UnavailableError,
    WitnessConfig,
    check_delegator,
    compare_state,
    ed25519_verify,
    find_seal,
    gather_receipts,
    load_kel,
    resolve_delegation_chain,
    validate_seal,
    verify_signed_message,
)
from .policy import TrustPolicy
from .sources import EventSource

log = logging.getLogger(__name__)

# Per-witness query: (witness_aid, aid, sequence) -> raw receipts
WitnessQueryFn = Callable[[str, str, int], Awaitable[List[Dict[str, Any]]]]


# =============================================================================
# Request
# =============================================================================


@dataclass
class VerificationRequest:
    """What to verify.

    Attributes:
        delegate_aid: Delegated identifier under verification.
        expected_delegator_aid: Delegator the caller expects; falls back to
            the policy's counterparty registry.
        leaf_credential_said: Leaf ACDC for the credential chain level.
        witness_config: Overrides the witness pool/threshold from the log.
        message: Signed message for the signature level.
        signature: Signature over message (raw bytes or qb64).
        request_id: Correlation id for logs and the report.
    """
    delegate_aid: str
    expected_delegator_aid: Optional[str] = None
    leaf_credential_said: Optional[str] = None
    witness_config: Optional[WitnessConfig] = None
    message: Optional[Union[str, bytes]] = None
    signature: Optional[Union[str, bytes]] = None
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))


# =============================================================================
# Level Builder
# =============================================================================


@dataclass
class LevelBuilder:
    """Accumulates the outcome of a single verification level.

    FAIL always wins over WARN, and WARN over PASS. Use build() to create
    the final LevelResult.
    """

    level: VerificationLevel
    status: CheckStatus = CheckStatus.PASS
    details: List[str] = field(default_factory=list)
    code: Optional[str] = None
    values: Dict[str, Any] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)
    evidence: List[str] = field(default_factory=list)

    def fail(self, code: str, reason: str) -> None:
        """Record a failure. The first failure's code is kept."""
        self.status = CheckStatus.FAIL
        if self.code is None:
            self.code = code
        self.details.append(reason)

    def warn(self, message: str) -> None:
        if self.status == CheckStatus.PASS:
            self.status = CheckStatus.WARN
        self.warnings.append(message)

    def skip(self, reason: str) -> None:
        self.status = CheckStatus.SKIPPED
        self.details.append(reason)

    def note(self, detail: str) -> None:
        """Add a detail line without changing the status."""
        self.details.append(detail)

    def add_evidence(self, ev: str) -> None:
        """Add evidence string (e.g., AID, SAID, or anchoring event)."""
        self.evidence.append(ev)

    def build(self) -> LevelResult:
        return LevelResult(
            level=self.level,
            status=self.status,
            detail="; ".join(self.details),
            code=self.code,
            recoverable=ERROR_RECOVERABILITY.get(self.code) if self.code else None,
            values=self.values,
            warnings=self.warnings,
            evidence=self.evidence,
        )


def skipped_level(level: VerificationLevel, reason: str) -> LevelResult:
    return LevelResult(level=level, status=CheckStatus.SKIPPED, detail=reason)


# =============================================================================
# Error Conversion
# =============================================================================


def record_error(builder: LevelBuilder, exc: Exception) -> None:
    """Record a domain exception as a level failure.

    Extracts error code and message from exception attributes; anything
    without a code is an internal error.
    """
    code = getattr(exc, "code", None) or ErrorCode.INTERNAL_ERROR
    message = getattr(exc, "message", None) or str(exc) or type(exc).__name__
    builder.fail(code, message)


@dataclass
class _Run:
    """State shared by the levels of one verification run."""
    request: VerificationRequest
    policy: TrustPolicy
    kels: Dict[str, KEL] = field(default_factory=dict)
    delegate_kel: Optional[KEL] = None
    delegator_kel: Optional[KEL] = None
    delegator_aid: Optional[str] = None


# =============================================================================
# Verifier
# =============================================================================


class Verifier:
    """Verifies delegated identifiers and their credential chains.

    Args:
        source: Primary EventSource.
        secondary_source: Independent EventSource for state consistency.
        witness_query: Per-witness receipt query; defaults to
            source.query_witness.
        signature_verifier: Signature primitive (default Ed25519).
        fetch_timeout: Seconds per collaborator fetch.
        witness_timeout: Seconds per witness receipt query.
        receipt_deadline: Overall seconds for receipt gathering.
    """

    def __init__(
        self,
        source: EventSource,
        secondary_source: Optional[EventSource] = None,
        witness_query: Optional[WitnessQueryFn] = None,
        signature_verifier: SignatureVerifier = ed25519_verify,
        fetch_timeout: Optional[float] = None,
        witness_timeout: Optional[float] = None,
        receipt_deadline: Optional[float] = None,
    ):
        self._source = source
        self._secondary_source = secondary_source
        self._witness_query = witness_query or source.query_witness
        self._signature_verifier = signature_verifier
        self._fetch_timeout = (
            fetch_timeout if fetch_timeout is not None else settings.FETCH_TIMEOUT_SECONDS
        )
        self._witness_timeout = witness_timeout
        self._receipt_deadline = receipt_deadline

        self._checks = {
            VerificationLevel.BASIC_REFERENCE: self._check_basic_reference,
            VerificationLevel.SEAL_CRYPTOGRAPHY: self._check_seal,
            VerificationLevel.WITNESS_CONSENSUS: self._check_witnesses,
            VerificationLevel.CREDENTIAL_CHAIN: self._check_credential_chain,
            VerificationLevel.STATE_CONSISTENCY: self._check_state,
            VerificationLevel.MESSAGE_SIGNATURE: self._check_signature,
        }

    async def verify(
        self,
        request: VerificationRequest,
        policy: Optional[TrustPolicy] = None,
    ) -> Report:
        """Run every level and return the report. Never raises for
        verification failures."""
        policy = policy or TrustPolicy.default()
        run = _Run(request=request, policy=policy)
        extra = verification_context(request.request_id, request.delegate_aid)
        log.info(f"Verifying delegation of {request.delegate_aid[:20]}...", extra=extra)

        levels: List[LevelResult] = []
        gate: Optional[str] = None
        for level in LEVEL_ORDER:
            if gate is not None:
                levels.append(skipped_level(level, gate))
                continue

            result = await self._run_level(level, run)
            levels.append(result)
            log.debug(
                f"{level.value}: {result.status.value} {result.detail}",
                extra=verification_context(request.request_id, request.delegate_aid, level.value),
            )

            if result.status == CheckStatus.FAIL and (
                level == VerificationLevel.BASIC_REFERENCE or policy.strict_level_order
            ):
                gate = f"not checked: {level.value} failed"

        report = Report(
            request_id=request.request_id,
            delegate_aid=request.delegate_aid,
            delegator_aid=run.delegator_aid,
            overall_status=derive_overall_status(levels),
            levels=levels,
        )
        log.info(
            f"Delegation of {request.delegate_aid[:20]}...: {report.overall_status.value}",
            extra=extra,
        )
        return report

    async def verify_counterparty(
        self,
        name: str,
        policy: TrustPolicy,
        leaf_credential_said: Optional[str] = None,
        message: Optional[Union[str, bytes]] = None,
        signature: Optional[Union[str, bytes]] = None,
    ) -> Report:
        """Verify a counterparty registered in the policy by name.

        Raises:
            ValueError: If the policy has no counterparty with this name.
        """
        counterparty = policy.lookup(name)
        if counterparty is None:
            raise ValueError(f"Unknown counterparty: {name}")
        request = VerificationRequest(
            delegate_aid=counterparty.agent_aid,
            expected_delegator_aid=counterparty.delegator_aid,
            leaf_credential_said=leaf_credential_said,
            message=message,
            signature=signature,
        )
        return await self.verify(request, policy)

    async def _run_level(self, level: VerificationLevel, run: _Run) -> LevelResult:
        builder = LevelBuilder(level=level)
        try:
            await self._checks[level](run, builder)
        except (KeriError, ACDCError) as e:
            record_error(builder, e)
        except Exception as e:
            log.exception(
                f"Unexpected error in {level.value}",
                extra=verification_context(
                    run.request.request_id, run.request.delegate_aid, level.value
                ),
            )
            builder.fail(ErrorCode.INTERNAL_ERROR, f"Internal error: {type(e).__name__}: {e}")
        return builder.build()

    # -------------------------------------------------------------------------
    # Collaborator access
    # -------------------------------------------------------------------------

    async def _fetch(self, awaitable: Awaitable, what: str):
        try:
            return await asyncio.wait_for(awaitable, timeout=self._fetch_timeout)
        except asyncio.TimeoutError:
            raise UnavailableError(f"Timed out fetching {what} after {self._fetch_timeout}s")

    async def _load_kel(self, source: EventSource, aid: str) -> KEL:
        raw = await self._fetch(source.fetch_log(aid), f"KEL for {aid}")
        kel = load_kel(raw)
        if kel.aid != aid:
            raise MalformedLogError(f"KEL fetched for {aid} describes {kel.aid}")
        return kel

    async def _kel(self, run: _Run, aid: str) -> KEL:
        """Primary-source KEL, loaded once per run."""
        if aid not in run.kels:
            run.kels[aid] = await self._load_kel(self._source, aid)
        return run.kels[aid]

    # -------------------------------------------------------------------------
    # Levels
    # -------------------------------------------------------------------------

    async def _check_basic_reference(self, run: _Run, b: LevelBuilder) -> None:
        request = run.request
        run.delegate_kel = await self._kel(run, request.delegate_aid)

        expected = request.expected_delegator_aid or run.policy.expected_delegator(
            request.delegate_aid
        )
        b.values["delegateId"] = request.delegate_aid
        b.values["expectedDelegatorId"] = expected
        delegator_aid = check_delegator(run.delegate_kel, expected)
        b.values["delegatorId"] = delegator_aid
        b.add_evidence(f"delegate:{request.delegate_aid}")
        b.add_evidence(f"delegator:{delegator_aid}")
        if expected is None:
            b.warn(f"No expected delegator known for {request.delegate_aid}; accepted di as named")

        run.delegator_kel = await self._kel(run, delegator_aid)
        run.delegator_aid = delegator_aid
        b.note(f"{request.delegate_aid} delegated by {delegator_aid}")

        if run.delegator_kel.is_delegated:
            try:
                chain = await resolve_delegation_chain(
                    run.delegator_kel, lambda aid: self._kel(run, aid)
                )
            except KeriError as e:
                b.warn(f"Delegation chain above {delegator_aid} unresolved: {e.message}")
            else:
                b.values["delegationChain"] = [request.delegate_aid] + chain.delegates
                b.values["delegationRoot"] = chain.root_aid

    async def _check_seal(self, run: _Run, b: LevelBuilder) -> None:
        inception = run.delegate_kel.inception
        match = find_seal(run.delegator_kel, run.delegate_kel.aid, inception.sequence)
        for warning in match.warnings:
            b.warn(warning)

        validation = validate_seal(inception, match.seal)
        b.values.update(validation.values())
        b.values["anchorSequence"] = match.anchor_sequence
        b.add_evidence(f"anchor:{run.delegator_aid}@{match.anchor_sequence}")
        validation.raise_for_mismatch()
        b.note(f"seal anchored at delegator sequence {match.anchor_sequence}")

    async def _check_witnesses(self, run: _Run, b: LevelBuilder) -> None:
        kel = run.delegate_kel
        event = kel.inception
        config = run.request.witness_config or kel.witness_config_at(event.sequence)

        async def query(witness_id: str) -> List[Dict[str, Any]]:
            return await self._witness_query(witness_id, kel.aid, event.sequence)

        gathered = await gather_receipts(
            event, config, query, self._witness_timeout, self._receipt_deadline
        )
        quorum = gathered.quorum
        b.values.update({
            "received": quorum.received,
            "threshold": quorum.threshold,
            "witnessCount": quorum.witness_count,
            "witnesses": quorum.witnesses,
            "responded": len(gathered.responded),
            "timedOut": gathered.timed_out,
            "stopped": gathered.stopped,
        })
        for warning in gathered.warnings + quorum.warnings:
            b.warn(warning)
        quorum.raise_for_quorum()
        b.note(f"{quorum.received} of {quorum.threshold} required witness receipts")

    async def _check_credential_chain(self, run: _Run, b: LevelBuilder) -> None:
        leaf_said = run.request.leaf_credential_said
        if not leaf_said:
            b.skip("no credential supplied")
            return

        raw = await self._fetch(self._source.fetch_credential(leaf_said), f"credential {leaf_said}")
        leaf = parse_credential(raw)
        graph = await self._fetch_ancestors(leaf, b)
        kels = await self._fetch_di2i_issuer_kels(run, graph, b)

        chain = walk_chain(leaf, graph, kels, run.policy.trusted_root_issuers)
        b.values["path"] = chain.path
        b.values["roots"] = chain.roots
        b.values["hops"] = [hop.to_dict() for hop in chain.hops]
        if not chain.valid:
            b.fail(chain.code or ErrorCode.INVALID_EDGE, chain.reason or "Credential chain invalid")
            return

        if run.policy.require_leaf_binding:
            bound_to = {run.delegator_aid, run.delegate_kel.aid}
            if leaf.issuee_aid not in bound_to:
                b.fail(
                    ErrorCode.CREDENTIAL_UNBOUND,
                    f"Leaf credential {leaf.said} issued to {leaf.issuee_aid}, "
                    f"not to delegator {run.delegator_aid} or delegate {run.delegate_kel.aid}",
                )
                return

        b.note(f"{len(chain.hops)} hops to root {', '.join(chain.roots)}")

    async def _fetch_ancestors(self, leaf: Credential, b: LevelBuilder) -> Dict[str, Credential]:
        """Fetch every credential reachable from the leaf.

        Missing parents are left out; the chain walk reports them.
        """
        graph = {leaf.said: leaf}
        frontier = [leaf]
        for _ in range(settings.MAX_CHAIN_DEPTH + 1):
            if not frontier:
                break
            next_frontier = []
            for credential in frontier:
                for edge in credential.edges.values():
                    if edge.parent_said in graph:
                        continue
                    try:
                        raw = await self._fetch(
                            self._source.fetch_credential(edge.parent_said),
                            f"credential {edge.parent_said}",
                        )
                    except CredentialNotFoundError:
                        log.info(f"Parent credential {edge.parent_said[:20]}... not found")
                        continue
                    parent = parse_credential(raw)
                    graph[parent.said] = parent
                    next_frontier.append(parent)
            frontier = next_frontier
        b.add_evidence(f"credentials:{len(graph)}")
        return graph

    async def _fetch_di2i_issuer_kels(
        self, run: _Run, graph: Dict[str, Credential], b: LevelBuilder
    ) -> Dict[str, KEL]:
        """Load KELs of issuers whose DI2I edges may rely on delegation."""
        kels: Dict[str, KEL] = {}
        for credential in graph.values():
            if not any(e.operator == EdgeOperator.DI2I for e in credential.edges.values()):
                continue
            issuer = credential.issuer_aid
            if issuer in kels:
                continue
            try:
                kels[issuer] = await self._kel(run, issuer)
            except KeriError as e:
                b.warn(f"KEL for DI2I issuer {issuer} unavailable: {e.message}")
        return kels

    async def _check_state(self, run: _Run, b: LevelBuilder) -> None:
        if self._secondary_source is None:
            b.skip("no secondary source configured")
            return

        remote = await self._load_kel(self._secondary_source, run.delegate_kel.aid)
        result = compare_state(run.delegate_kel, remote)
        b.values.update(result.values())
        if not result.consistent:
            b.fail(
                ErrorCode.STATE_DIVERGENCE,
                "; ".join(d.describe() for d in result.divergences),
            )
            return
        b.note(f"views agree at sequence {run.delegate_kel.latest().sequence}")

    async def _check_signature(self, run: _Run, b: LevelBuilder) -> None:
        request = run.request
        if request.message is None or request.signature is None:
            b.skip("no signed message supplied")
            return

        check = verify_signed_message(
            run.delegate_kel, request.message, request.signature, self._signature_verifier
        )
        b.values["signerId"] = check.signer_aid
        b.values["keysTried"] = check.keys_tried
        b.values["keyIndex"] = check.key_index
        for error in check.errors:
            b.warn(f"Undecodable signing key: {error}")
        check.raise_for_signature()
        b.note(f"verified with current key {check.key_index}")
