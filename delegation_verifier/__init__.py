"""Verification engine for delegated KERI identifiers and ACDC trust chains.

Usage:
    source = HttpEventSource("http://localhost:3902")
    verifier = Verifier(source)
    report = await verifier.verify(VerificationRequest(delegate_aid=aid))
    print(render_text(report))
"""

from .api_models import CheckStatus, ErrorCode, LevelResult, Report, VerificationLevel, render_text
from .policy import Counterparty, TrustPolicy
from .sources import EventSource, HttpEventSource, InMemoryEventSource
from .verify import VerificationRequest, Verifier

__all__ = [
    "CheckStatus",
    "ErrorCode",
    "LevelResult",
    "Report",
    "VerificationLevel",
    "render_text",
    "Counterparty",
    "TrustPolicy",
    "EventSource",
    "HttpEventSource",
    "InMemoryEventSource",
    "VerificationRequest",
    "Verifier",
]
