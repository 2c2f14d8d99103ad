"""KERI event log verification.

Event log model, delegation seal matching, witness quorum evaluation and
receipt gathering, key state comparison and signed message checks.
"""

from .exceptions import (
    KeriError,
    MalformedLogError,
    EventNotFoundError,
    WitnessConfigError,
    DelegationInvalidError,
    SealNotFoundError,
    SealMismatchError,
    InsufficientQuorumError,
    UnavailableError,
    SignatureInvalidError,
)
from .kel_parser import (
    KEL,
    KELEvent,
    EventType,
    Seal,
    WitnessReceipt,
    WitnessConfig,
    load_kel,
    load_kel_json,
    parse_witness_receipt,
)
from .seal import SealMatch, SealValidation, find_seal, validate_seal
from .witness import QuorumResult, evaluate_quorum
from .receipts import GatherResult, WitnessQuery, gather_receipts, parse_receipts
from .state import ConsistencyResult, Divergence, compare_state
from .delegation import DelegationChain, check_delegator, resolve_delegation_chain
from .signature import SignatureCheck, SignatureVerifier, ed25519_verify, verify_signed_message

__all__ = [
    # Exceptions
    "KeriError",
    "MalformedLogError",
    "EventNotFoundError",
    "WitnessConfigError",
    "DelegationInvalidError",
    "SealNotFoundError",
    "SealMismatchError",
    "InsufficientQuorumError",
    "UnavailableError",
    "SignatureInvalidError",
    # Event log
    "KEL",
    "KELEvent",
    "EventType",
    "Seal",
    "WitnessReceipt",
    "WitnessConfig",
    "load_kel",
    "load_kel_json",
    "parse_witness_receipt",
    # Seals
    "SealMatch",
    "SealValidation",
    "find_seal",
    "validate_seal",
    # Witnesses
    "QuorumResult",
    "evaluate_quorum",
    "GatherResult",
    "WitnessQuery",
    "gather_receipts",
    "parse_receipts",
    # State
    "ConsistencyResult",
    "Divergence",
    "compare_state",
    # Delegation
    "DelegationChain",
    "check_delegator",
    "resolve_delegation_chain",
    # Signatures
    "SignatureCheck",
    "SignatureVerifier",
    "ed25519_verify",
    "verify_signed_message",
]
