"""
Delegation verification report models.

The Report is the only outward-facing artifact of a verification run.
It is created fresh per run and is safe to serialise as JSON or text.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


# =============================================================================
# Check Status
# =============================================================================

class CheckStatus(str, Enum):
    """Outcome of a single verification level."""
    PASS = "pass"
    FAIL = "fail"
    WARN = "warn"          # Passed, but with something the caller should see
    SKIPPED = "skipped"    # Not attempted (prerequisite failed or no input)


class VerificationLevel(str, Enum):
    """Ordered verification levels."""
    BASIC_REFERENCE = "basic_reference"
    SEAL_CRYPTOGRAPHY = "seal_cryptography"
    WITNESS_CONSENSUS = "witness_consensus"
    CREDENTIAL_CHAIN = "credential_chain"
    STATE_CONSISTENCY = "state_consistency"
    MESSAGE_SIGNATURE = "message_signature"


LEVEL_ORDER: List[VerificationLevel] = [
    VerificationLevel.BASIC_REFERENCE,
    VerificationLevel.SEAL_CRYPTOGRAPHY,
    VerificationLevel.WITNESS_CONSENSUS,
    VerificationLevel.CREDENTIAL_CHAIN,
    VerificationLevel.STATE_CONSISTENCY,
    VerificationLevel.MESSAGE_SIGNATURE,
]


# =============================================================================
# Error Codes
# =============================================================================

class ErrorCode:
    """Error code registry."""
    # Event log layer
    MALFORMED_LOG = "MALFORMED_LOG"
    EVENT_NOT_FOUND = "EVENT_NOT_FOUND"
    WITNESS_CONFIG_INVALID = "WITNESS_CONFIG_INVALID"

    # Delegation layer
    DELEGATION_INVALID = "DELEGATION_INVALID"
    SEAL_NOT_FOUND = "SEAL_NOT_FOUND"
    SEAL_MISMATCH = "SEAL_MISMATCH"

    # Witness layer
    INSUFFICIENT_QUORUM = "INSUFFICIENT_QUORUM"

    # Credential layer
    INVALID_EDGE = "INVALID_EDGE"
    CREDENTIAL_NOT_FOUND = "CREDENTIAL_NOT_FOUND"
    CREDENTIAL_MALFORMED = "CREDENTIAL_MALFORMED"
    CREDENTIAL_UNBOUND = "CREDENTIAL_UNBOUND"

    # State layer
    STATE_DIVERGENCE = "STATE_DIVERGENCE"

    # Signature layer
    SIGNATURE_INVALID = "SIGNATURE_INVALID"

    # Collaborators / engine
    UNAVAILABLE = "UNAVAILABLE"
    INTERNAL_ERROR = "INTERNAL_ERROR"


# Whether a caller may sensibly retry after a delay.
# Seal and quorum failures can reflect eventual consistency upstream;
# structural failures never resolve by waiting.
ERROR_RECOVERABILITY: Dict[str, bool] = {
    ErrorCode.MALFORMED_LOG: False,
    ErrorCode.EVENT_NOT_FOUND: False,
    ErrorCode.WITNESS_CONFIG_INVALID: False,
    ErrorCode.DELEGATION_INVALID: False,
    ErrorCode.SEAL_NOT_FOUND: True,          # Recoverable
    ErrorCode.SEAL_MISMATCH: True,           # Recoverable
    ErrorCode.INSUFFICIENT_QUORUM: True,     # Recoverable
    ErrorCode.INVALID_EDGE: False,
    ErrorCode.CREDENTIAL_NOT_FOUND: True,    # Recoverable
    ErrorCode.CREDENTIAL_MALFORMED: False,
    ErrorCode.CREDENTIAL_UNBOUND: False,
    ErrorCode.STATE_DIVERGENCE: True,        # Recoverable
    ErrorCode.SIGNATURE_INVALID: False,
    ErrorCode.UNAVAILABLE: True,             # Recoverable
    ErrorCode.INTERNAL_ERROR: True,          # Recoverable
}


# =============================================================================
# Report Models
# =============================================================================

class LevelResult(BaseModel):
    """Outcome of one verification level."""
    level: VerificationLevel
    status: CheckStatus
    detail: str = ""
    code: Optional[str] = None
    recoverable: Optional[bool] = None
    values: Dict[str, Any] = Field(default_factory=dict)
    warnings: List[str] = Field(default_factory=list)
    evidence: List[str] = Field(default_factory=list)


class Report(BaseModel):
    """Complete verification report."""
    request_id: str
    delegate_aid: str
    delegator_aid: Optional[str] = None
    overall_status: CheckStatus
    levels: List[LevelResult] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def level(self, level: VerificationLevel) -> Optional[LevelResult]:
        """Return the result for a level, or None if it was not run."""
        for result in self.levels:
            if result.level == level:
                return result
        return None

    @property
    def passed(self) -> bool:
        return self.overall_status in (CheckStatus.PASS, CheckStatus.WARN)


# =============================================================================
# Status Derivation
# =============================================================================

def derive_overall_status(levels: List[LevelResult]) -> CheckStatus:
    """
    Derive overall status from level results:
    - FAIL > WARN > PASS
    - SKIPPED levels do not affect the outcome on their own
    - A report with no executed level is FAIL
    """
    worst = None
    for result in levels:
        if result.status == CheckStatus.FAIL:
            return CheckStatus.FAIL
        if result.status == CheckStatus.WARN:
            worst = CheckStatus.WARN
        elif result.status == CheckStatus.PASS and worst is None:
            worst = CheckStatus.PASS
    return worst or CheckStatus.FAIL


_STATUS_MARKS = {
    CheckStatus.PASS: "✓",
    CheckStatus.FAIL: "✗",
    CheckStatus.WARN: "⚠",
    CheckStatus.SKIPPED: "-",
}


def render_text(report: Report) -> str:
    """Render a report as human-readable text."""
    lines = [
        f"Delegation verification {report.request_id}",
        f"  delegate:  {report.delegate_aid}",
        f"  delegator: {report.delegator_aid or '(unknown)'}",
        f"  overall:   {report.overall_status.value.upper()}",
        "",
    ]
    for result in report.levels:
        mark = _STATUS_MARKS[result.status]
        line = f"{mark} {result.level.value}: {result.status.value}"
        if result.detail:
            line += f" - {result.detail}"
        lines.append(line)
        if result.code:
            lines.append(f"    code: {result.code} (recoverable={result.recoverable})")
        for key, value in result.values.items():
            lines.append(f"    {key}: {value}")
        for warning in result.warnings:
            lines.append(f"    warning: {warning}")
    return "\n".join(lines)
