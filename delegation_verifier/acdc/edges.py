"""Credential edge validation (I2I / NI2I / DI2I).

Per the ACDC spec, edge operators control how authority flows from a parent
credential to the child that references it:
- I2I: child.issuer == parent.issuee (strict)
- NI2I: no constraint (reference only)
- DI2I: child.issuer == parent.issuee, OR child.issuer is a delegated
  identifier whose delegator is parent.issuee

Validation runs three ordered steps (reference, schema, operator). The first
failing step decides the result; an edge is never partially valid.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from delegation_verifier.keri.kel_parser import KEL

from .exceptions import ACDCChainInvalid
from .models import Credential, EdgeOperator

log = logging.getLogger(__name__)

STEP_REFERENCE = "reference"
STEP_SCHEMA = "schema"
STEP_OPERATOR = "operator"


@dataclass(frozen=True)
class EdgeValidation:
    """Result of validating one credential edge.

    Attributes:
        valid: True if every step passed.
        edge_name: Name of the edge in the child's 'e' block.
        child_said: SAID of the referencing credential.
        parent_said: SAID of the credential offered as parent.
        operator: Edge operator, None if the edge does not exist.
        failed_step: STEP_REFERENCE, STEP_SCHEMA or STEP_OPERATOR.
        reason: Why the failing step failed, naming the compared values.
        expected: Value required by the failing step.
        actual: Value found by the failing step.
        via_delegation: True if DI2I passed through the issuer's delegation.
    """
    valid: bool
    edge_name: str
    child_said: str
    parent_said: str
    operator: Optional[EdgeOperator] = None
    failed_step: Optional[str] = None
    reason: Optional[str] = None
    expected: Optional[str] = None
    actual: Optional[str] = None
    via_delegation: bool = False

    def values(self) -> Dict[str, Any]:
        values = {
            "edge": self.edge_name,
            "child": self.child_said,
            "parent": self.parent_said,
        }
        if self.operator is not None:
            values["operator"] = self.operator.value
        if self.failed_step:
            values["step"] = self.failed_step
            values["expected"] = self.expected
            values["actual"] = self.actual
        return values

    def raise_for_edge(self) -> None:
        """Raise ACDCChainInvalid if the edge is invalid."""
        if not self.valid:
            raise ACDCChainInvalid(self.reason)


def _fail(child, edge_name, parent, step, reason, expected, actual, operator=None):
    log.info(f"Edge '{edge_name}' {child.said[:20]}... -> {parent.said[:20]}... invalid: {reason}")
    return EdgeValidation(
        valid=False,
        edge_name=edge_name,
        child_said=child.said,
        parent_said=parent.said,
        operator=operator,
        failed_step=step,
        reason=reason,
        expected=expected,
        actual=actual,
    )


def validate_i2i_edge(child: Credential, parent: Credential) -> Optional[str]:
    """Check the I2I rule. Returns a violation reason, or None if satisfied."""
    if parent.issuee_aid is None:
        return (
            f"I2I: parent {parent.said} has no issuee (bearer credential); "
            f"child issuer {child.issuer_aid} cannot be its issuee"
        )
    if child.issuer_aid != parent.issuee_aid:
        return (
            f"I2I: child issuer {child.issuer_aid} != parent issuee {parent.issuee_aid}"
        )
    return None


def validate_di2i_edge(
    child: Credential,
    parent: Credential,
    kels: Optional[Mapping[str, KEL]] = None,
) -> Optional[str]:
    """Check the DI2I rule. Returns a violation reason, or None if satisfied.

    The child's issuer may be the parent's issuee, or a delegate of it: its
    own KEL must open with a delegated inception naming the parent's issuee.
    """
    if validate_i2i_edge(child, parent) is None:
        return None
    if parent.issuee_aid is None:
        return f"DI2I: parent {parent.said} has no issuee (bearer credential)"

    issuer_kel = (kels or {}).get(child.issuer_aid)
    if issuer_kel is None:
        return (
            f"DI2I: child issuer {child.issuer_aid} != parent issuee {parent.issuee_aid} "
            f"and no KEL is available for {child.issuer_aid}"
        )
    if not issuer_kel.is_delegated:
        return (
            f"DI2I: child issuer {child.issuer_aid} != parent issuee {parent.issuee_aid} "
            f"and {child.issuer_aid} is not a delegated identifier"
        )
    if issuer_kel.delegator_id != parent.issuee_aid:
        return (
            f"DI2I: child issuer {child.issuer_aid} is delegated by "
            f"{issuer_kel.delegator_id}, not parent issuee {parent.issuee_aid}"
        )
    return None


def validate_edge(
    child: Credential,
    edge_name: str,
    parent: Credential,
    kels: Optional[Mapping[str, KEL]] = None,
) -> EdgeValidation:
    """Validate one edge of a credential graph.

    Steps, in order:
    1. reference: edge parent SAID == parent.said
    2. schema: edge parent schema == parent.schema_said
    3. operator: I2I / NI2I / DI2I rule

    Args:
        child: Credential declaring the edge.
        edge_name: Name of the edge in child.edges.
        parent: Credential offered as the edge target.
        kels: AID -> KEL for issuers whose delegation DI2I may rely on.

    Returns:
        EdgeValidation; the first failing step decides the outcome.
    """
    edge = child.edges.get(edge_name)
    if edge is None:
        return _fail(
            child, edge_name, parent, STEP_REFERENCE,
            f"Credential {child.said} has no edge '{edge_name}'",
            expected=edge_name, actual=None,
        )

    if edge.parent_said != parent.said:
        return _fail(
            child, edge_name, parent, STEP_REFERENCE,
            f"Edge '{edge_name}' references {edge.parent_said}, not {parent.said}",
            expected=edge.parent_said, actual=parent.said, operator=edge.operator,
        )

    if edge.parent_schema != parent.schema_said:
        return _fail(
            child, edge_name, parent, STEP_SCHEMA,
            f"Edge '{edge_name}' requires schema {edge.parent_schema}, "
            f"parent {parent.said} has schema {parent.schema_said}",
            expected=edge.parent_schema, actual=parent.schema_said, operator=edge.operator,
        )

    via_delegation = False
    if edge.operator == EdgeOperator.I2I:
        violation = validate_i2i_edge(child, parent)
    elif edge.operator == EdgeOperator.DI2I:
        violation = validate_di2i_edge(child, parent, kels)
        via_delegation = violation is None and child.issuer_aid != parent.issuee_aid
    else:
        violation = None

    if violation:
        return _fail(
            child, edge_name, parent, STEP_OPERATOR, violation,
            expected=parent.issuee_aid, actual=child.issuer_aid, operator=edge.operator,
        )

    return EdgeValidation(
        valid=True,
        edge_name=edge_name,
        child_said=child.said,
        parent_said=parent.said,
        operator=edge.operator,
        via_delegation=via_delegation,
    )
