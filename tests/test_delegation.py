"""
Tests for delegator checks and multi-level delegation chain resolution.

Chain: Root -> Delegator (delegated) -> Delegate (delegated)
"""

import pytest

from delegation_verifier.api_models import ErrorCode
from delegation_verifier.keri.delegation import check_delegator, resolve_delegation_chain
from delegation_verifier.keri.exceptions import DelegationInvalidError
from delegation_verifier.keri.kel_parser import load_kel

from builders import (
    DELEGATE_AID,
    DELEGATOR_AID,
    OTHER_AID,
    ROOT_AID,
    delegate_log,
    delegator_log,
    dip,
    icp,
    ixn,
    seal,
)


def _fetcher(logs):
    kels = {aid: load_kel(events) for aid, events in logs.items()}
    fetched = []

    async def fetch(aid):
        fetched.append(aid)
        return kels[aid]

    fetch.fetched = fetched
    return fetch


def _delegated_delegator_log():
    """Delegator incepted by delegation from ROOT, then anchoring the delegate."""
    return [
        dip(DELEGATOR_AID, "EDGR_dip", ROOT_AID),
        ixn(DELEGATOR_AID, 1, "EDGR_ixn1", "EDGR_dip", [seal(DELEGATE_AID, 0, "D1")]),
    ]


def _root_log(anchored="EDGR_dip"):
    return [
        icp(ROOT_AID, "EROOT_icp"),
        ixn(ROOT_AID, 1, "EROOT_ixn1", "EROOT_icp", [seal(DELEGATOR_AID, 0, anchored)]),
    ]


class TestCheckDelegator:
    """Tests for check_delegator."""

    def test_returns_delegator(self):
        assert check_delegator(load_kel(delegate_log())) == DELEGATOR_AID

    def test_expected_delegator_matches(self):
        assert check_delegator(load_kel(delegate_log()), DELEGATOR_AID) == DELEGATOR_AID

    def test_expected_delegator_mismatch(self):
        with pytest.raises(DelegationInvalidError) as exc:
            check_delegator(load_kel(delegate_log()), OTHER_AID)
        assert exc.value.code == ErrorCode.DELEGATION_INVALID
        assert OTHER_AID in exc.value.message

    def test_non_delegated_rejected(self):
        with pytest.raises(DelegationInvalidError, match="not a delegated identifier"):
            check_delegator(load_kel([icp(DELEGATE_AID, "E0")]))


class TestResolveDelegationChain:
    """Tests for resolve_delegation_chain."""

    @pytest.mark.asyncio
    async def test_single_level(self):
        fetch = _fetcher({DELEGATOR_AID: delegator_log()})
        chain = await resolve_delegation_chain(load_kel(delegate_log()), fetch)
        assert chain.delegates == [DELEGATE_AID, DELEGATOR_AID]
        assert chain.root_aid == DELEGATOR_AID
        assert chain.anchor_sequences == [1]
        assert chain.depth == 1

    @pytest.mark.asyncio
    async def test_two_levels(self):
        fetch = _fetcher({DELEGATOR_AID: _delegated_delegator_log(), ROOT_AID: _root_log()})
        chain = await resolve_delegation_chain(load_kel(delegate_log()), fetch)
        assert chain.delegates == [DELEGATE_AID, DELEGATOR_AID, ROOT_AID]
        assert chain.root_aid == ROOT_AID
        assert fetch.fetched == [DELEGATOR_AID, ROOT_AID]

    @pytest.mark.asyncio
    async def test_upper_hop_seal_mismatch(self):
        fetch = _fetcher({
            DELEGATOR_AID: _delegated_delegator_log(),
            ROOT_AID: _root_log(anchored="EWRONG"),
        })
        with pytest.raises(DelegationInvalidError, match="EWRONG"):
            await resolve_delegation_chain(load_kel(delegate_log()), fetch)

    @pytest.mark.asyncio
    async def test_missing_seal(self):
        fetch = _fetcher({DELEGATOR_AID: [icp(DELEGATOR_AID, "EDGR_icp")]})
        with pytest.raises(DelegationInvalidError, match="anchors"):
            await resolve_delegation_chain(load_kel(delegate_log()), fetch)

    @pytest.mark.asyncio
    async def test_seals_optional(self):
        fetch = _fetcher({DELEGATOR_AID: [icp(DELEGATOR_AID, "EDGR_icp")]})
        chain = await resolve_delegation_chain(
            load_kel(delegate_log()), fetch, verify_seals=False
        )
        assert chain.root_aid == DELEGATOR_AID
        assert chain.anchor_sequences == [-1]

    @pytest.mark.asyncio
    async def test_circular_delegation(self):
        fetch = _fetcher({
            DELEGATOR_AID: [dip(DELEGATOR_AID, "EDGR_dip", DELEGATE_AID)],
            DELEGATE_AID: delegate_log(),
        })
        with pytest.raises(DelegationInvalidError, match="Circular"):
            await resolve_delegation_chain(load_kel(delegate_log()), fetch, verify_seals=False)

    @pytest.mark.asyncio
    async def test_max_depth(self):
        with pytest.raises(DelegationInvalidError, match="max depth"):
            await resolve_delegation_chain(
                load_kel(delegate_log()), _fetcher({}), depth=5
            )
