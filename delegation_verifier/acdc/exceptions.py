"""ACDC verification exceptions.

These exceptions map to ErrorCode values in api_models.py:
- ACDCParseError -> CREDENTIAL_MALFORMED
- ACDCChainInvalid -> INVALID_EDGE
- CredentialNotFoundError -> CREDENTIAL_NOT_FOUND
"""

from delegation_verifier.api_models import ErrorCode


class ACDCError(Exception):
    """Base exception for ACDC verification errors."""
    code = ErrorCode.INTERNAL_ERROR

    def __init__(self, message: str = ""):
        self.message = message
        super().__init__(message)


class ACDCParseError(ACDCError):
    """Failed to parse ACDC structure (missing or malformed fields)."""
    code = ErrorCode.CREDENTIAL_MALFORMED


class ACDCChainInvalid(ACDCError):
    """ACDC credential chain validation failed.

    This covers:
    - Edge references a different credential or schema
    - Edge operator constraint violated
    - Chain doesn't terminate at a trusted root
    - Chain too deep
    """
    code = ErrorCode.INVALID_EDGE


class CredentialNotFoundError(ACDCError):
    """Credential could not be found by its SAID."""
    code = ErrorCode.CREDENTIAL_NOT_FOUND
