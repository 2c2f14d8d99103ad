"""
End-to-end tests for the verification orchestrator.

Each test assembles an in-memory world (KELs, receipts, credentials) and
checks the resulting Report level by level.
"""

import asyncio
import json

import pytest

from delegation_verifier.api_models import (
    CheckStatus,
    ErrorCode,
    VerificationLevel,
    render_text,
)
from delegation_verifier.policy import Counterparty, TrustPolicy
from delegation_verifier.sources import InMemoryEventSource
from delegation_verifier.verify import VerificationRequest, Verifier

from builders import (
    DELEGATE_AID,
    DELEGATOR_AID,
    OTHER_AID,
    ROOT_AID,
    WITNESSES,
    acdc,
    delegate_log,
    delegator_log,
    dip,
    edge,
    icp,
    ixn,
    receipt,
    seal,
    vlei_chain,
)

L = VerificationLevel


def build_source(dip_digest="D1", anchored_digest="D1", receipts=1, leaf_issuee=DELEGATOR_AID):
    source = InMemoryEventSource()
    source.add_log(DELEGATOR_AID, delegator_log(anchored_digest=anchored_digest))
    source.add_log(DELEGATE_AID, delegate_log(digest=dip_digest, witnesses=WITNESSES, toad=1))
    source.add_receipts(DELEGATE_AID, 0, [receipt(w, dip_digest) for w in WITNESSES[:receipts]])
    for credential in vlei_chain(leaf_issuee=leaf_issuee):
        source.add_credential(credential)
    return source


def request(**kwargs):
    kwargs.setdefault("delegate_aid", DELEGATE_AID)
    kwargs.setdefault("expected_delegator_aid", DELEGATOR_AID)
    return VerificationRequest(**kwargs)


def statuses(report):
    return {r.level: r.status for r in report.levels}


@pytest.fixture
def policy():
    return TrustPolicy()


class TestVerifierHappyPath:
    """A fully anchored, receipted, credentialed delegate."""

    @pytest.mark.asyncio
    async def test_all_levels_pass(self, policy):
        verifier = Verifier(build_source())
        report = await verifier.verify(request(leaf_credential_said="EOOR_CRED"), policy)

        assert report.overall_status == CheckStatus.PASS
        assert report.passed
        assert report.delegator_aid == DELEGATOR_AID
        assert [r.level for r in report.levels] == list(L)
        assert statuses(report) == {
            L.BASIC_REFERENCE: CheckStatus.PASS,
            L.SEAL_CRYPTOGRAPHY: CheckStatus.PASS,
            L.WITNESS_CONSENSUS: CheckStatus.PASS,
            L.CREDENTIAL_CHAIN: CheckStatus.PASS,
            L.STATE_CONSISTENCY: CheckStatus.SKIPPED,
            L.MESSAGE_SIGNATURE: CheckStatus.SKIPPED,
        }
        seal_level = report.level(L.SEAL_CRYPTOGRAPHY)
        assert seal_level.values["sealDigest"] == "D1"
        assert seal_level.values["dipDigest"] == "D1"
        assert seal_level.values["anchorSequence"] == 1
        witness_level = report.level(L.WITNESS_CONSENSUS)
        assert witness_level.values["received"] == 1
        assert witness_level.values["threshold"] == 1
        chain_level = report.level(L.CREDENTIAL_CHAIN)
        assert chain_level.values["path"][0] == "EOOR_CRED"
        assert chain_level.values["roots"] == ["EQVI_CRED"]

    @pytest.mark.asyncio
    async def test_no_credential_skips_chain(self, policy):
        report = await Verifier(build_source()).verify(request(), policy)
        chain_level = report.level(L.CREDENTIAL_CHAIN)
        assert chain_level.status == CheckStatus.SKIPPED
        assert chain_level.detail == "no credential supplied"
        assert report.overall_status == CheckStatus.PASS

    @pytest.mark.asyncio
    async def test_unknown_expected_delegator_warns(self, policy):
        report = await Verifier(build_source()).verify(
            request(expected_delegator_aid=None), policy
        )
        assert report.level(L.BASIC_REFERENCE).status == CheckStatus.WARN
        assert report.overall_status == CheckStatus.WARN
        assert report.passed

    @pytest.mark.asyncio
    async def test_multi_level_delegation_recorded(self, policy):
        source = build_source()
        source.add_log(ROOT_AID, [
            icp(ROOT_AID, "EROOT_icp"),
            ixn(ROOT_AID, 1, "EROOT_ixn1", "EROOT_icp", [seal(DELEGATOR_AID, 0, "EDGR_dip")]),
        ])
        source.add_log(DELEGATOR_AID, [
            dip(DELEGATOR_AID, "EDGR_dip", ROOT_AID),
            ixn(DELEGATOR_AID, 1, "EDGR_ixn1", "EDGR_dip", [seal(DELEGATE_AID, 0, "D1")]),
        ])
        report = await Verifier(source).verify(request(), policy)
        basic = report.level(L.BASIC_REFERENCE)
        assert basic.status == CheckStatus.PASS
        assert basic.values["delegationChain"] == [DELEGATE_AID, DELEGATOR_AID, ROOT_AID]
        assert basic.values["delegationRoot"] == ROOT_AID


class TestVerifierFailures:
    """Failures are reported per level, never raised."""

    @pytest.mark.asyncio
    async def test_seal_digest_mismatch(self, policy):
        """Delegator sealed D1, delegate's dip is D2."""
        report = await Verifier(build_source(dip_digest="D2")).verify(request(), policy)
        seal_level = report.level(L.SEAL_CRYPTOGRAPHY)
        assert seal_level.status == CheckStatus.FAIL
        assert seal_level.code == ErrorCode.SEAL_MISMATCH
        assert seal_level.recoverable is True
        assert seal_level.values["sealDigest"] == "D1"
        assert seal_level.values["dipDigest"] == "D2"
        assert report.overall_status == CheckStatus.FAIL
        # Non-strict ordering: independent levels still run
        assert report.level(L.WITNESS_CONSENSUS).status == CheckStatus.PASS

    @pytest.mark.asyncio
    async def test_strict_order_skips_after_failure(self):
        policy = TrustPolicy(strict_level_order=True)
        report = await Verifier(build_source(dip_digest="D2")).verify(request(), policy)
        assert report.level(L.SEAL_CRYPTOGRAPHY).status == CheckStatus.FAIL
        for level in (L.WITNESS_CONSENSUS, L.CREDENTIAL_CHAIN,
                      L.STATE_CONSISTENCY, L.MESSAGE_SIGNATURE):
            result = report.level(level)
            assert result.status == CheckStatus.SKIPPED
            assert result.detail == "not checked: seal_cryptography failed"

    @pytest.mark.asyncio
    async def test_delegator_mismatch_gates_everything(self, policy):
        report = await Verifier(build_source()).verify(
            request(expected_delegator_aid=OTHER_AID), policy
        )
        basic = report.level(L.BASIC_REFERENCE)
        assert basic.status == CheckStatus.FAIL
        assert basic.code == ErrorCode.DELEGATION_INVALID
        assert basic.recoverable is False
        assert all(r.status == CheckStatus.SKIPPED for r in report.levels[1:])
        assert report.overall_status == CheckStatus.FAIL

    @pytest.mark.asyncio
    async def test_missing_seal(self, policy):
        source = build_source()
        source.add_log(DELEGATOR_AID, [icp(DELEGATOR_AID, "EDGR_icp")])
        report = await Verifier(source).verify(request(), policy)
        seal_level = report.level(L.SEAL_CRYPTOGRAPHY)
        assert seal_level.code == ErrorCode.SEAL_NOT_FOUND
        assert seal_level.recoverable is True

    @pytest.mark.asyncio
    async def test_duplicate_seal_warns(self, policy):
        source = build_source()
        source.add_log(DELEGATOR_AID, delegator_log() + [
            ixn(DELEGATOR_AID, 2, "EDGR_ixn2", "EDGR_ixn1", [seal(DELEGATE_AID, 0, "D9")]),
        ])
        report = await Verifier(source).verify(request(), policy)
        seal_level = report.level(L.SEAL_CRYPTOGRAPHY)
        assert seal_level.status == CheckStatus.WARN
        assert "possible duplicity" in seal_level.warnings[0]

    @pytest.mark.asyncio
    async def test_zero_receipts(self, policy):
        """6 witnesses, threshold 1, no receipts: received=0, threshold=1."""
        verifier = Verifier(build_source(receipts=0), witness_timeout=0.05, receipt_deadline=0.2)
        report = await verifier.verify(request(), policy)
        witness_level = report.level(L.WITNESS_CONSENSUS)
        assert witness_level.status == CheckStatus.FAIL
        assert witness_level.code == ErrorCode.INSUFFICIENT_QUORUM
        assert witness_level.values["received"] == 0
        assert witness_level.values["threshold"] == 1
        assert "received=0, threshold=1" in witness_level.detail

    @pytest.mark.asyncio
    async def test_slow_witnesses_hit_deadline(self, policy):
        async def hanging_query(witness_id, aid, sequence):
            await asyncio.sleep(3600)

        verifier = Verifier(
            build_source(), witness_query=hanging_query,
            witness_timeout=5.0, receipt_deadline=0.05,
        )
        report = await verifier.verify(request(), policy)
        witness_level = report.level(L.WITNESS_CONSENSUS)
        assert witness_level.code == ErrorCode.INSUFFICIENT_QUORUM
        assert witness_level.values["stopped"] == "deadline"
        assert len(witness_level.values["timedOut"]) == 0

    @pytest.mark.asyncio
    async def test_malformed_delegate_log(self, policy):
        source = build_source()
        bad = delegate_log()
        bad.append(ixn(DELEGATE_AID, 1, "E1", "EWRONG"))
        source.add_log(DELEGATE_AID, bad)
        report = await Verifier(source).verify(request(), policy)
        basic = report.level(L.BASIC_REFERENCE)
        assert basic.code == ErrorCode.MALFORMED_LOG
        assert "position 1" in basic.detail

    @pytest.mark.asyncio
    async def test_unavailable_delegator(self, policy):
        source = InMemoryEventSource()
        source.add_log(DELEGATE_AID, delegate_log())
        report = await Verifier(source).verify(request(), policy)
        basic = report.level(L.BASIC_REFERENCE)
        assert basic.code == ErrorCode.UNAVAILABLE
        assert basic.recoverable is True

    @pytest.mark.asyncio
    async def test_fetch_timeout_is_unavailable(self, policy):
        class SlowSource(InMemoryEventSource):
            async def fetch_log(self, aid):
                await asyncio.sleep(3600)

        report = await Verifier(SlowSource(), fetch_timeout=0.05).verify(request(), policy)
        basic = report.level(L.BASIC_REFERENCE)
        assert basic.code == ErrorCode.UNAVAILABLE
        assert "Timed out" in basic.detail

    @pytest.mark.asyncio
    async def test_unexpected_exception_is_internal_error(self, policy):
        class BrokenSource(InMemoryEventSource):
            async def fetch_credential(self, said):
                raise RuntimeError("disk on fire")

        source = BrokenSource()
        source.add_log(DELEGATOR_AID, delegator_log())
        source.add_log(DELEGATE_AID, delegate_log())
        report = await Verifier(source).verify(request(leaf_credential_said="EOOR_CRED"), policy)
        chain_level = report.level(L.CREDENTIAL_CHAIN)
        assert chain_level.status == CheckStatus.FAIL
        assert chain_level.code == ErrorCode.INTERNAL_ERROR
        assert "disk on fire" in chain_level.detail
        assert report.level(L.SEAL_CRYPTOGRAPHY).status == CheckStatus.PASS


class TestCredentialChainLevel:
    """Tests for the credential chain level."""

    @pytest.mark.asyncio
    async def test_leaf_not_found(self, policy):
        report = await Verifier(build_source()).verify(
            request(leaf_credential_said="EMISSING"), policy
        )
        chain_level = report.level(L.CREDENTIAL_CHAIN)
        assert chain_level.code == ErrorCode.CREDENTIAL_NOT_FOUND

    @pytest.mark.asyncio
    async def test_unbound_leaf(self, policy):
        source = build_source(leaf_issuee=OTHER_AID)
        report = await Verifier(source).verify(request(leaf_credential_said="EOOR_CRED"), policy)
        chain_level = report.level(L.CREDENTIAL_CHAIN)
        assert chain_level.code == ErrorCode.CREDENTIAL_UNBOUND
        assert OTHER_AID in chain_level.detail

    @pytest.mark.asyncio
    async def test_unbound_leaf_allowed_by_policy(self):
        source = build_source(leaf_issuee=OTHER_AID)
        report = await Verifier(source).verify(
            request(leaf_credential_said="EOOR_CRED"), TrustPolicy(require_leaf_binding=False)
        )
        assert report.level(L.CREDENTIAL_CHAIN).status == CheckStatus.PASS

    @pytest.mark.asyncio
    async def test_broken_edge(self, policy):
        source = build_source()
        parent = acdc("EPARENT", OTHER_AID, "ESCHEMA_p", issuee=OTHER_AID)
        leaf = acdc("ELEAF", DELEGATOR_AID, "ESCHEMA_l", issuee=DELEGATOR_AID,
                    edges={"auth": edge(parent, "I2I")})
        source.add_credential(parent)
        source.add_credential(leaf)
        report = await Verifier(source).verify(request(leaf_credential_said="ELEAF"), policy)
        chain_level = report.level(L.CREDENTIAL_CHAIN)
        assert chain_level.code == ErrorCode.INVALID_EDGE
        assert chain_level.values["hops"][0]["status"] == "fail"

    @pytest.mark.asyncio
    async def test_di2i_through_delegate(self, policy):
        """Delegate issues under DI2I against a credential held by its delegator."""
        source = build_source()
        parent = acdc("EPARENT", OTHER_AID, "ESCHEMA_p", issuee=DELEGATOR_AID)
        leaf = acdc("ELEAF", DELEGATE_AID, "ESCHEMA_l", issuee=DELEGATE_AID,
                    edges={"auth": edge(parent, "DI2I")})
        source.add_credential(parent)
        source.add_credential(leaf)
        report = await Verifier(source).verify(request(leaf_credential_said="ELEAF"), policy)
        assert report.level(L.CREDENTIAL_CHAIN).status == CheckStatus.PASS

    @pytest.mark.asyncio
    async def test_untrusted_root(self):
        report = await Verifier(build_source()).verify(
            request(leaf_credential_said="EOOR_CRED"),
            TrustPolicy(trusted_root_issuers={OTHER_AID}),
        )
        chain_level = report.level(L.CREDENTIAL_CHAIN)
        assert chain_level.status == CheckStatus.FAIL
        assert "trusted root" in chain_level.detail


class TestStateAndSignatureLevels:
    """Tests for state consistency and message signature levels."""

    @pytest.mark.asyncio
    async def test_consistent_secondary(self, policy):
        verifier = Verifier(build_source(), secondary_source=build_source())
        report = await verifier.verify(request(), policy)
        assert report.level(L.STATE_CONSISTENCY).status == CheckStatus.PASS

    @pytest.mark.asyncio
    async def test_divergent_secondary(self, policy):
        secondary = InMemoryEventSource()
        secondary.add_log(DELEGATE_AID, delegate_log(witnesses=WITNESSES, toad=1) + [
            ixn(DELEGATE_AID, 1, "D1_ixn1", "D1"),
        ])
        verifier = Verifier(build_source(), secondary_source=secondary)
        report = await verifier.verify(request(), policy)
        state_level = report.level(L.STATE_CONSISTENCY)
        assert state_level.status == CheckStatus.FAIL
        assert state_level.code == ErrorCode.STATE_DIVERGENCE
        assert state_level.values["latestSequence"] == {"local": 0, "remote": 1}

    @pytest.mark.asyncio
    async def test_signature_verified(self, policy):
        verifier = Verifier(build_source(), signature_verifier=lambda m, s, k: m == b"hello")
        report = await verifier.verify(request(message="hello", signature=b"sig"), policy)
        signature_level = report.level(L.MESSAGE_SIGNATURE)
        assert signature_level.status == CheckStatus.PASS
        assert signature_level.values["signerId"] == DELEGATE_AID

    @pytest.mark.asyncio
    async def test_signature_rejected(self, policy):
        verifier = Verifier(build_source(), signature_verifier=lambda m, s, k: False)
        report = await verifier.verify(request(message="hello", signature=b"sig"), policy)
        signature_level = report.level(L.MESSAGE_SIGNATURE)
        assert signature_level.code == ErrorCode.SIGNATURE_INVALID
        assert report.overall_status == CheckStatus.FAIL


class TestCounterparty:
    """Tests for registry-driven verification."""

    @pytest.mark.asyncio
    async def test_verify_counterparty(self):
        policy = TrustPolicy(counterparties={
            "acme-agent": Counterparty("acme-agent", DELEGATE_AID, DELEGATOR_AID),
        })
        report = await Verifier(build_source()).verify_counterparty("acme-agent", policy)
        assert report.overall_status == CheckStatus.PASS
        assert report.level(L.BASIC_REFERENCE).values["expectedDelegatorId"] == DELEGATOR_AID

    @pytest.mark.asyncio
    async def test_registry_delegator_mismatch(self):
        policy = TrustPolicy(counterparties={
            "acme-agent": Counterparty("acme-agent", DELEGATE_AID, OTHER_AID),
        })
        report = await Verifier(build_source()).verify_counterparty("acme-agent", policy)
        assert report.level(L.BASIC_REFERENCE).code == ErrorCode.DELEGATION_INVALID

    @pytest.mark.asyncio
    async def test_registry_used_without_explicit_expectation(self):
        policy = TrustPolicy(counterparties={
            "acme-agent": Counterparty("acme-agent", DELEGATE_AID, OTHER_AID),
        })
        report = await Verifier(build_source()).verify(
            request(expected_delegator_aid=None), policy
        )
        assert report.level(L.BASIC_REFERENCE).status == CheckStatus.FAIL

    @pytest.mark.asyncio
    async def test_unknown_counterparty(self, policy):
        with pytest.raises(ValueError, match="Unknown counterparty"):
            await Verifier(build_source()).verify_counterparty("nobody", policy)


class TestReportOutput:
    """Tests for report serialisation."""

    @pytest.mark.asyncio
    async def test_json_and_text(self, policy):
        report = await Verifier(build_source(dip_digest="D2")).verify(
            request(request_id="req-1"), policy
        )
        data = json.loads(report.model_dump_json())
        assert data["request_id"] == "req-1"
        assert data["overall_status"] == "fail"
        levels = {level["level"]: level for level in data["levels"]}
        assert levels["seal_cryptography"]["values"]["sealDigest"] == "D1"

        text = render_text(report)
        assert "✗ seal_cryptography: fail" in text
        assert "code: SEAL_MISMATCH (recoverable=True)" in text
        assert "sealDigest: D1" in text
