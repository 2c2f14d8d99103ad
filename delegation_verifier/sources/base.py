"""Read-only collaborator contract.

The engine never fetches data itself; it consumes event logs, receipts and
credentials through an EventSource. Implementations raise:
- UnavailableError when the query itself fails (network, upstream error)
- CredentialNotFoundError when a credential SAID is unknown
"""

from typing import Any, Dict, List


class EventSource:
    """Async read-only queries for logs, receipts and credentials."""

    async def fetch_log(self, aid: str) -> List[Dict[str, Any]]:
        """Return the ordered raw events of an identifier's KEL.

        Raises:
            UnavailableError: If the log cannot be obtained.
        """
        raise NotImplementedError

    async def fetch_witness_receipts(self, aid: str, sequence: int) -> List[Dict[str, Any]]:
        """Return raw witness receipts for the event at `sequence`.

        Raises:
            UnavailableError: If the receipts cannot be obtained.
        """
        raise NotImplementedError

    async def fetch_credential(self, said: str) -> Dict[str, Any]:
        """Return a raw ACDC by SAID.

        Raises:
            CredentialNotFoundError: If no credential has this SAID.
            UnavailableError: If the query fails.
        """
        raise NotImplementedError

    async def query_witness(self, witness_id: str, aid: str, sequence: int) -> List[Dict[str, Any]]:
        """Receipts one witness holds for (aid, sequence).

        The default filters fetch_witness_receipts(); sources that can reach
        witnesses individually override it.
        """
        receipts = await self.fetch_witness_receipts(aid, sequence)
        return [r for r in receipts if isinstance(r, dict) and r.get("i") == witness_id]
