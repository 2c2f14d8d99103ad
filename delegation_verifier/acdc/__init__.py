"""ACDC (Authentic Chained Data Container) trust chain verification.

Components:
- models: Credential, EdgeRef and EdgeOperator; parse_credential
- edges: per-edge validation (reference, schema, I2I/NI2I/DI2I operator)
- chain: breadth-first chain walk from leaf to root
- exceptions: ACDCError hierarchy
"""

from .exceptions import (
    ACDCError,
    ACDCChainInvalid,
    ACDCParseError,
    CredentialNotFoundError,
)
from .models import Credential, EdgeOperator, EdgeRef, parse_credential
from .edges import EdgeValidation, validate_edge
from .chain import ChainValidation, HopResult, walk_chain

__all__ = [
    "ACDCError",
    "ACDCChainInvalid",
    "ACDCParseError",
    "CredentialNotFoundError",
    "Credential",
    "EdgeOperator",
    "EdgeRef",
    "parse_credential",
    "EdgeValidation",
    "validate_edge",
    "ChainValidation",
    "HopResult",
    "walk_chain",
]
