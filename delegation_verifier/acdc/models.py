"""ACDC (Authentic Chained Data Container) models and parsing.

ACDC structure per KERI/ACDC spec:
- d: SAID (self-addressing identifier)
- i: Issuer AID
- s: Schema SAID
- a: Attributes; 'a.i' is the issuee AID (absent for bearer credentials)
- e: Edges to parent credentials, each {n: parent SAID, s: parent schema,
  o: operator}
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from .exceptions import ACDCParseError


class EdgeOperator(str, Enum):
    """Edge operators controlling authority flow through a chain."""
    I2I = "I2I"    # Issuer-To-Issuee: child.issuer == parent.issuee
    NI2I = "NI2I"  # Not-Constrained: reference only
    DI2I = "DI2I"  # Delegated-Issuer-To-Issuee: I2I or delegate of parent.issuee


DEFAULT_OPERATOR = EdgeOperator.I2I


@dataclass(frozen=True)
class EdgeRef:
    """Reference from a credential to a parent credential."""
    parent_said: str
    parent_schema: str
    operator: EdgeOperator = DEFAULT_OPERATOR


@dataclass
class Credential:
    """Parsed ACDC credential.

    Attributes:
        said: Self-addressing identifier from 'd' field.
        schema_said: Schema SAID from 's' field.
        issuer_aid: Issuer's AID from 'i' field.
        issuee_aid: Issuee AID from 'a.i' field (None for bearer credentials).
        edges: Edge name -> EdgeRef from the 'e' field.
        raw: Original parsed dictionary.
    """
    said: str
    schema_said: str
    issuer_aid: str
    issuee_aid: Optional[str] = None
    edges: Dict[str, EdgeRef] = field(default_factory=dict)
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_root(self) -> bool:
        """True if this credential has no parent edges."""
        return not self.edges


def _parse_edge(said: str, name: str, data: Any) -> EdgeRef:
    if not isinstance(data, dict):
        raise ACDCParseError(f"Credential {said}: edge '{name}' must be an object")

    parent_said = data.get("n")
    if not isinstance(parent_said, str) or not parent_said:
        raise ACDCParseError(f"Credential {said}: edge '{name}' missing parent SAID 'n'")

    parent_schema = data.get("s")
    if not isinstance(parent_schema, str) or not parent_schema:
        raise ACDCParseError(f"Credential {said}: edge '{name}' missing parent schema 's'")

    operator_str = data.get("o") or DEFAULT_OPERATOR.value
    try:
        operator = EdgeOperator(operator_str)
    except ValueError:
        raise ACDCParseError(
            f"Credential {said}: edge '{name}' has unknown operator {operator_str!r}"
        )

    return EdgeRef(parent_said=parent_said, parent_schema=parent_schema, operator=operator)


def parse_credential(data: Mapping[str, Any]) -> Credential:
    """Parse and validate ACDC structure.

    Args:
        data: ACDC dictionary.

    Returns:
        Parsed Credential.

    Raises:
        ACDCParseError: If required fields are missing or edges are malformed.
    """
    if not isinstance(data, Mapping):
        raise ACDCParseError(f"Credential must be an object, got {type(data).__name__}")

    for label in ("d", "i", "s"):
        value = data.get(label)
        if not isinstance(value, str) or not value:
            raise ACDCParseError(f"ACDC missing required field: '{label}'")
    said = data["d"]

    issuee_aid = None
    attributes = data.get("a")
    if isinstance(attributes, dict):
        issuee_aid = attributes.get("i") or None

    edges: Dict[str, EdgeRef] = {}
    edges_data = data.get("e") or {}
    if not isinstance(edges_data, dict):
        raise ACDCParseError(f"Credential {said}: edges block must be an object")
    for name, edge_data in edges_data.items():
        # 'd' is the edges block's own SAID
        if name == "d":
            continue
        edges[name] = _parse_edge(said, name, edge_data)

    return Credential(
        said=said,
        schema_said=data["s"],
        issuer_aid=data["i"],
        issuee_aid=issuee_aid,
        edges=edges,
        raw=dict(data),
    )
