"""Key state consistency between two views of the same identifier.

Two independently obtained KELs for one AID (e.g. a local copy and a
witness or agent copy) should agree on the latest event and on the
current witness configuration. Any divergence is reported with both
values; deciding which view is correct is the caller's job.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List

from .kel_parser import KEL

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Divergence:
    """One field on which two views disagree."""
    name: str
    local: Any
    remote: Any

    def describe(self) -> str:
        return f"{self.name}: local={self.local!r} remote={self.remote!r}"


@dataclass
class ConsistencyResult:
    """Outcome of comparing two KEL views."""
    aid: str
    divergences: List[Divergence] = field(default_factory=list)

    @property
    def consistent(self) -> bool:
        return not self.divergences

    def values(self) -> Dict[str, Dict[str, Any]]:
        return {d.name: {"local": d.local, "remote": d.remote} for d in self.divergences}


def compare_state(local_view: KEL, remote_view: KEL) -> ConsistencyResult:
    """Compare latest sequence, latest digest and witness state of two views.

    The comparison is symmetric: swapping the arguments swaps the
    local/remote values of each divergence and nothing else.
    """
    divergences = []

    if local_view.aid != remote_view.aid:
        divergences.append(Divergence("identifier", local_view.aid, remote_view.aid))

    local_latest = local_view.latest()
    remote_latest = remote_view.latest()
    if local_latest.sequence != remote_latest.sequence:
        divergences.append(
            Divergence("latestSequence", local_latest.sequence, remote_latest.sequence)
        )
    if local_latest.digest != remote_latest.digest:
        divergences.append(Divergence("latestDigest", local_latest.digest, remote_latest.digest))

    local_witnesses = local_view.witness_config
    remote_witnesses = remote_view.witness_config
    if local_witnesses.witness_ids != remote_witnesses.witness_ids:
        divergences.append(
            Divergence(
                "witnesses",
                sorted(local_witnesses.witness_ids),
                sorted(remote_witnesses.witness_ids),
            )
        )
    if local_witnesses.threshold != remote_witnesses.threshold:
        divergences.append(
            Divergence("witnessThreshold", local_witnesses.threshold, remote_witnesses.threshold)
        )

    for divergence in divergences:
        log.warning(f"State divergence for {local_view.aid[:16]}...: {divergence.describe()}")

    return ConsistencyResult(aid=local_view.aid, divergences=divergences)
