"""In-memory EventSource for fixtures and embedding callers."""

import copy
import logging
from typing import Any, Dict, List, Optional, Tuple

from delegation_verifier.acdc.exceptions import CredentialNotFoundError
from delegation_verifier.keri.exceptions import UnavailableError

from .base import EventSource

log = logging.getLogger(__name__)


class InMemoryEventSource(EventSource):
    """EventSource backed by dicts.

    Usage:
        source = InMemoryEventSource()
        source.add_log(aid, [icp, ixn])
        source.add_receipts(aid, 0, [{"i": wit, "d": icp["d"], "s": "0"}])
        source.add_credential(acdc)
    """

    def __init__(
        self,
        logs: Optional[Dict[str, List[Dict[str, Any]]]] = None,
        receipts: Optional[Dict[Tuple[str, int], List[Dict[str, Any]]]] = None,
        credentials: Optional[Dict[str, Dict[str, Any]]] = None,
    ):
        self._logs: Dict[str, List[Dict[str, Any]]] = dict(logs or {})
        self._receipts: Dict[Tuple[str, int], List[Dict[str, Any]]] = dict(receipts or {})
        self._credentials: Dict[str, Dict[str, Any]] = dict(credentials or {})

    def add_log(self, aid: str, events: List[Dict[str, Any]]) -> None:
        self._logs[aid] = list(events)

    def add_receipts(self, aid: str, sequence: int, receipts: List[Dict[str, Any]]) -> None:
        self._receipts.setdefault((aid, sequence), []).extend(receipts)

    def add_credential(self, acdc: Dict[str, Any]) -> None:
        self._credentials[acdc["d"]] = acdc

    async def fetch_log(self, aid: str) -> List[Dict[str, Any]]:
        if aid not in self._logs:
            log.debug(f"No KEL stored for {aid[:16]}...")
            raise UnavailableError(f"No KEL available for {aid}")
        # Callers get their own copy; stored events stay immutable
        return copy.deepcopy(self._logs[aid])

    async def fetch_witness_receipts(self, aid: str, sequence: int) -> List[Dict[str, Any]]:
        return copy.deepcopy(self._receipts.get((aid, sequence), []))

    async def fetch_credential(self, said: str) -> Dict[str, Any]:
        if said not in self._credentials:
            raise CredentialNotFoundError(f"Credential {said} not found")
        return copy.deepcopy(self._credentials[said])
