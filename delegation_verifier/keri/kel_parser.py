"""KEL (Key Event Log) parser and loader.

Parses raw KERI events (JSON dicts keyed by KERI field labels) into typed
events and loads them into an append-only log.

Loading enforces the structural invariants of a log, independent of any
delegation or witness policy:
1. First event is an inception (icp or dip) at sequence 0
2. Sequence numbers are contiguous and in order
3. Each event's prior_digest matches the previous event's digest
4. All events belong to the same identifier and digests are unique

A broken log is rejected immediately, citing the first offending position.
"""

import copy
import json
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterator, List, Optional, Tuple, Union

from .exceptions import EventNotFoundError, MalformedLogError, WitnessConfigError

log = logging.getLogger(__name__)


class EventType(Enum):
    """KERI event types.

    Only establishment events (icp, rot, dip, drt) affect key and witness state.
    Interaction events (ixn) anchor data but don't change keys.
    """
    ICP = "icp"  # Inception - first event, establishes AID
    ROT = "rot"  # Rotation - changes signing keys
    IXN = "ixn"  # Interaction - anchors data, no key change
    DIP = "dip"  # Delegated inception
    DRT = "drt"  # Delegated rotation


# Establishment events that change key state
ESTABLISHMENT_TYPES = frozenset({EventType.ICP, EventType.ROT, EventType.DIP, EventType.DRT})

# Events that may open a log
INCEPTION_TYPES = frozenset({EventType.ICP, EventType.DIP})

# Delegated events requiring delegator approval
DELEGATED_TYPES = frozenset({EventType.DIP, EventType.DRT})

# KERI sequence numbers: lowercase hex digits only
SEQUENCE_PATTERN = re.compile(r"[0-9a-f]+")


@dataclass(frozen=True)
class Seal:
    """Event seal anchored in another identifier's event.

    Attests that identifier `target_id`'s event at `target_sequence`
    has digest `target_digest`.
    """
    target_id: str
    target_sequence: int
    target_digest: str


@dataclass(frozen=True)
class WitnessReceipt:
    """One witness's attestation that it observed an event.

    Attributes:
        witness_id: The AID of the witness.
        event_digest: Digest (SAID) of the receipted event.
        sequence: Sequence number of the receipted event.
    """
    witness_id: str
    event_digest: str
    sequence: int


@dataclass(frozen=True)
class WitnessConfig:
    """Declared witness pool and receipt threshold (toad).

    Raises:
        WitnessConfigError: If threshold is negative or exceeds the pool size.
    """
    witness_ids: FrozenSet[str]
    threshold: int

    def __post_init__(self):
        if not isinstance(self.witness_ids, frozenset):
            object.__setattr__(self, "witness_ids", frozenset(self.witness_ids))
        if self.threshold < 0:
            raise WitnessConfigError(f"Witness threshold must be >= 0, got {self.threshold}")
        if self.threshold > len(self.witness_ids):
            raise WitnessConfigError(
                f"Witness threshold {self.threshold} exceeds witness count "
                f"{len(self.witness_ids)}"
            )


@dataclass(frozen=True)
class KELEvent:
    """Parsed KERI event from a Key Event Log.

    Attributes:
        event_type: The type of event (icp, rot, etc.).
        sequence: Event sequence number (0 for inception).
        digest: This event's SAID.
        prior_digest: SAID of the prior event (empty for inception).
        owner_id: AID whose log this event belongs to ('i' field).
        delegator_id: Delegator AID ('di' field, delegated inception only).
        anchors: Seals from the 'a' field.
        signing_keys: Current signing keys from the 'k' field (qb64).
        witnesses: Witness AIDs from the 'b' field (inception only).
        witness_threshold: Threshold from the 'bt' field, if present.
        witness_cuts: Witnesses removed by a rotation ('br').
        witness_adds: Witnesses added by a rotation ('ba').
        raw: Copy of the original event dict.
    """
    event_type: EventType
    sequence: int
    digest: str
    prior_digest: str
    owner_id: str
    delegator_id: Optional[str] = None
    anchors: Tuple[Seal, ...] = ()
    signing_keys: Tuple[str, ...] = ()
    witnesses: Tuple[str, ...] = ()
    witness_threshold: Optional[int] = None
    witness_cuts: Tuple[str, ...] = ()
    witness_adds: Tuple[str, ...] = ()
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_establishment(self) -> bool:
        """True if this event establishes or rotates key state."""
        return self.event_type in ESTABLISHMENT_TYPES

    @property
    def is_inception(self) -> bool:
        """True if this is an inception event (icp or dip)."""
        return self.event_type in INCEPTION_TYPES

    @property
    def is_delegated(self) -> bool:
        """True if this is a delegated event requiring delegator approval."""
        return self.event_type in DELEGATED_TYPES


# =============================================================================
# Field Parsing
# =============================================================================


def parse_sequence(value: Any) -> int:
    """Parse a KERI sequence number.

    KERI serialises sequence numbers as lowercase hex strings; integers
    are accepted as-is.

    Raises:
        ValueError: If the value is not a non-negative integer.
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid sequence number: {value!r}")
    if isinstance(value, int):
        sequence = value
    elif isinstance(value, str) and SEQUENCE_PATTERN.fullmatch(value):
        sequence = int(value, 16)
    else:
        raise ValueError(f"Invalid sequence number: {value!r}")
    if sequence < 0:
        raise ValueError(f"Sequence number must be non-negative: {sequence}")
    return sequence


def _require_str(data: Dict[str, Any], label: str) -> str:
    value = data.get(label)
    if not isinstance(value, str) or not value:
        raise ValueError(f"missing or empty '{label}' field")
    return value


def _str_list(data: Dict[str, Any], label: str) -> List[str]:
    value = data.get(label, [])
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ValueError(f"'{label}' field must be a list of strings")
    return list(value)


def parse_seal(data: Any) -> Seal:
    """Parse an event seal ({i, s, d}).

    Raises:
        ValueError: If a field is missing or malformed.
    """
    if not isinstance(data, dict):
        raise ValueError(f"seal must be an object, got {type(data).__name__}")
    return Seal(
        target_id=_require_str(data, "i"),
        target_sequence=parse_sequence(data.get("s")),
        target_digest=_require_str(data, "d"),
    )


def parse_witness_receipt(data: Any) -> WitnessReceipt:
    """Parse a raw witness receipt ({i, d, s}).

    Raises:
        ValueError: If a field is missing or malformed.
    """
    if not isinstance(data, dict):
        raise ValueError(f"receipt must be an object, got {type(data).__name__}")
    return WitnessReceipt(
        witness_id=_require_str(data, "i"),
        event_digest=_require_str(data, "d"),
        sequence=parse_sequence(data.get("s")),
    )


def parse_event(data: Dict[str, Any]) -> KELEvent:
    """Parse a single event from a dictionary.

    KERI event fields:
    - t: event type
    - i: identifier prefix (owner)
    - s: sequence number (hex string)
    - p: prior event digest
    - d: this event's digest (SAID)
    - di: delegator prefix (dip only)
    - a: anchors (seals)
    - k: signing keys
    - b, bt: witnesses and threshold (inception)
    - br, ba, bt: witness cuts, adds and threshold (rotation)

    Raises:
        ValueError: If a required field is missing or malformed.
    """
    if not isinstance(data, dict):
        raise ValueError(f"event must be an object, got {type(data).__name__}")

    event_type_str = data.get("t", "")
    try:
        event_type = EventType(event_type_str)
    except ValueError:
        raise ValueError(f"unknown event type: {event_type_str!r}")

    sequence = parse_sequence(data.get("s"))

    prior_digest = data.get("p", "") or ""
    if not isinstance(prior_digest, str):
        raise ValueError("'p' field must be a string")

    delegator_id = None
    if event_type == EventType.DIP:
        delegator_id = _require_str(data, "di")

    anchors_data = data.get("a", [])
    if isinstance(anchors_data, dict):
        anchors_data = [anchors_data]
    if not isinstance(anchors_data, list):
        raise ValueError("'a' field must be a list")
    # Only event seals ({i, s, d}) are delegation anchors; other data is ignored
    anchors = [
        parse_seal(anchor) for anchor in anchors_data
        if isinstance(anchor, dict) and {"i", "s", "d"} <= set(anchor)
    ]

    threshold = None
    if "bt" in data:
        threshold = parse_sequence(data["bt"])

    return KELEvent(
        event_type=event_type,
        sequence=sequence,
        digest=_require_str(data, "d"),
        prior_digest=prior_digest,
        owner_id=_require_str(data, "i"),
        delegator_id=delegator_id,
        anchors=tuple(anchors),
        signing_keys=tuple(_str_list(data, "k")),
        witnesses=tuple(_str_list(data, "b")),
        witness_threshold=threshold,
        witness_cuts=tuple(_str_list(data, "br")),
        witness_adds=tuple(_str_list(data, "ba")),
        raw=copy.deepcopy(data),
    )


# =============================================================================
# Key Event Log
# =============================================================================


class KEL:
    """A loaded, structurally valid Key Event Log.

    Only constructed via load_kel(); instances are never mutated.
    """

    def __init__(self, events: List[KELEvent], witness_configs: List[WitnessConfig]):
        self._events = events
        self._witness_configs = witness_configs

    def __len__(self) -> int:
        return len(self._events)

    def __iter__(self) -> Iterator[KELEvent]:
        return iter(self._events)

    def __repr__(self) -> str:
        return f"KEL(aid={self.aid[:16]}..., events={len(self._events)})"

    @property
    def events(self) -> List[KELEvent]:
        return list(self._events)

    @property
    def aid(self) -> str:
        return self._events[0].owner_id

    @property
    def inception(self) -> KELEvent:
        return self._events[0]

    @property
    def is_delegated(self) -> bool:
        return self.inception.event_type == EventType.DIP

    @property
    def delegator_id(self) -> Optional[str]:
        return self.inception.delegator_id

    def latest(self) -> KELEvent:
        """Return the most recent event."""
        return self._events[-1]

    def event_at(self, sequence: int) -> KELEvent:
        """Return the event at a sequence number.

        Raises:
            EventNotFoundError: If the log has no such event.
        """
        if 0 <= sequence < len(self._events):
            return self._events[sequence]
        raise EventNotFoundError(
            f"No event at sequence {sequence} in KEL for {self.aid[:16]}... "
            f"(latest is {self.latest().sequence})"
        )

    def interactions(self) -> List[KELEvent]:
        """Interaction events in sequence order."""
        return [e for e in self._events if e.event_type == EventType.IXN]

    def witness_config_at(self, sequence: int) -> WitnessConfig:
        """Witness pool and threshold in effect after the event at `sequence`."""
        self.event_at(sequence)
        return self._witness_configs[sequence]

    @property
    def witness_config(self) -> WitnessConfig:
        """Current witness pool and threshold."""
        return self._witness_configs[-1]

    @property
    def signing_keys(self) -> List[str]:
        """Signing keys from the latest establishment event."""
        for event in reversed(self._events):
            if event.is_establishment:
                return list(event.signing_keys)
        return []


def _next_witness_config(current: Optional[WitnessConfig], event: KELEvent) -> WitnessConfig:
    """Fold an event into the witness state.

    Raises:
        ValueError: If the event's witness fields are inconsistent.
        WitnessConfigError: If the resulting threshold is invalid.
    """
    if event.is_inception:
        if len(set(event.witnesses)) != len(event.witnesses):
            raise ValueError("duplicate witness in 'b' field")
        return WitnessConfig(frozenset(event.witnesses), event.witness_threshold or 0)

    if not event.is_establishment:
        return current

    witnesses = set(current.witness_ids)
    for cut in event.witness_cuts:
        if cut not in witnesses:
            raise ValueError(f"witness cut {cut[:16]}... is not a current witness")
        witnesses.discard(cut)
    for add in event.witness_adds:
        if add in witnesses:
            raise ValueError(f"witness add {add[:16]}... is already a witness")
        witnesses.add(add)

    threshold = current.threshold if event.witness_threshold is None else event.witness_threshold
    return WitnessConfig(frozenset(witnesses), threshold)


def load_kel(raw_events: List[Dict[str, Any]]) -> KEL:
    """Load and structurally validate a KEL.

    Events must be supplied in log order; the loader never reorders them.

    Args:
        raw_events: Ordered list of raw event dicts.

    Returns:
        A KEL instance.

    Raises:
        MalformedLogError: On the first structural violation, citing its position.
    """
    if not isinstance(raw_events, list):
        raise MalformedLogError(f"expected a list of events, got {type(raw_events).__name__}")
    if not raw_events:
        raise MalformedLogError("Empty KEL: no events")

    events: List[KELEvent] = []
    configs: List[WitnessConfig] = []
    seen_digests = set()

    for position, data in enumerate(raw_events):
        try:
            event = parse_event(data)
        except ValueError as e:
            raise MalformedLogError(str(e), position=position)

        if event.sequence != position:
            raise MalformedLogError(
                f"expected sequence {position}, found {event.sequence}",
                position=position,
            )

        if position == 0:
            if not event.is_inception:
                raise MalformedLogError(
                    f"KEL must start with inception, found {event.event_type.value}",
                    position=position,
                )
            if event.prior_digest:
                raise MalformedLogError(
                    "inception event must not carry a prior digest",
                    position=position,
                )
        else:
            prev = events[-1]
            if event.is_inception:
                raise MalformedLogError(
                    f"inception event {event.event_type.value} after sequence 0",
                    position=position,
                )
            if event.prior_digest != prev.digest:
                raise MalformedLogError(
                    f"prior digest {event.prior_digest[:20]}... != previous digest "
                    f"{prev.digest[:20]}...",
                    position=position,
                )
            if event.owner_id != prev.owner_id:
                raise MalformedLogError(
                    f"event belongs to {event.owner_id[:16]}..., log belongs to "
                    f"{prev.owner_id[:16]}...",
                    position=position,
                )

        if event.digest in seen_digests:
            raise MalformedLogError(
                f"duplicate event digest {event.digest[:20]}...", position=position
            )
        seen_digests.add(event.digest)

        try:
            configs.append(_next_witness_config(configs[-1] if configs else None, event))
        except (ValueError, WitnessConfigError) as e:
            message = e.message if isinstance(e, WitnessConfigError) else str(e)
            raise MalformedLogError(message, position=position)

        events.append(event)

    log.debug(f"Loaded KEL for {events[0].owner_id[:16]}... with {len(events)} events")
    return KEL(events, configs)


def load_kel_json(kel_data: Union[bytes, str]) -> KEL:
    """Load a KEL from its JSON encoding (a list of events, or one event).

    Raises:
        MalformedLogError: If the payload is not valid JSON or the log is malformed.
    """
    try:
        data = json.loads(kel_data)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise MalformedLogError(f"Failed to parse KEL JSON: {e}")
    if isinstance(data, dict):
        data = [data]
    return load_kel(data)
