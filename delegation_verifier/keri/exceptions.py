"""KERI-specific exceptions mapped to error codes.

- Structural failures (malformed logs, bad config) → non-recoverable
- Establishment-in-progress failures (seal, quorum) → recoverable
- Collaborator failures → recoverable, retry is the caller's concern
"""

from typing import Optional

from delegation_verifier.api_models import ErrorCode


class KeriError(Exception):
    """Base exception for KERI operations.

    Carries an error code that maps to ErrorCode constants.
    """

    def __init__(self, code: str, message: str):
        self.code = code
        self.message = message
        super().__init__(message)


class MalformedLogError(KeriError):
    """Event log violates a structural invariant.

    Always fatal to that log; never retried.

    Attributes:
        position: Index of the first offending event, or None when the
            log as a whole is unusable (e.g. empty or not a list).
    """

    def __init__(self, message: str = "Malformed event log", position: Optional[int] = None):
        self.position = position
        if position is not None:
            message = f"Event log invalid at position {position}: {message}"
        super().__init__(ErrorCode.MALFORMED_LOG, message)


class EventNotFoundError(KeriError):
    """No event at the requested sequence number."""

    def __init__(self, message: str = "Event not found"):
        super().__init__(ErrorCode.EVENT_NOT_FOUND, message)


class WitnessConfigError(KeriError, ValueError):
    """Witness configuration is inconsistent (threshold above witness count).

    A configuration error, not a runtime verification failure.
    """

    def __init__(self, message: str = "Invalid witness configuration"):
        super().__init__(ErrorCode.WITNESS_CONFIG_INVALID, message)


class DelegationInvalidError(KeriError):
    """Delegate log does not establish the claimed delegation.

    Used when:
    - The delegate's inception is not a delegated inception
    - The 'di' field does not name the expected delegator
    - A delegation chain is circular or too deep
    """

    def __init__(self, message: str = "Delegation invalid"):
        super().__init__(ErrorCode.DELEGATION_INVALID, message)


class SealNotFoundError(KeriError):
    """Delegator's log carries no anchor for the delegate event.

    Recoverable: the delegator may not have approved the delegation yet.
    """

    def __init__(self, message: str = "Delegation seal not found"):
        super().__init__(ErrorCode.SEAL_NOT_FOUND, message)


class SealMismatchError(KeriError):
    """Delegation seal does not match the delegate's event.

    Attributes:
        dip_digest: Digest of the delegate's inception event.
        seal_digest: Digest carried in the delegator's seal.
    """

    def __init__(
        self,
        message: str = "Delegation seal mismatch",
        dip_digest: Optional[str] = None,
        seal_digest: Optional[str] = None,
    ):
        self.dip_digest = dip_digest
        self.seal_digest = seal_digest
        super().__init__(ErrorCode.SEAL_MISMATCH, message)


class InsufficientQuorumError(KeriError):
    """Fewer distinct witness receipts than the declared threshold.

    Recoverable: receipts propagate over time.
    """

    def __init__(self, received: int, threshold: int, message: Optional[str] = None):
        self.received = received
        self.threshold = threshold
        super().__init__(
            ErrorCode.INSUFFICIENT_QUORUM,
            message or f"Insufficient witness receipts: received={received}, threshold={threshold}",
        )


class UnavailableError(KeriError):
    """A collaborator query failed (network, timeout, upstream error)."""

    def __init__(self, message: str = "Source unavailable"):
        super().__init__(ErrorCode.UNAVAILABLE, message)


class SignatureInvalidError(KeriError):
    """Signature is cryptographically invalid."""

    def __init__(self, message: str = "Signature verification failed"):
        super().__init__(ErrorCode.SIGNATURE_INVALID, message)
