"""HTTP EventSource for a KERIA-style agent.

Endpoints (paths configurable in core.config):
    GET {base}/identifiers/{aid}/events   -> JSON list of KEL events
    GET {base}/receipts/{aid}/{sn}        -> JSON list of witness receipts
    GET {base}/credentials/{said}         -> JSON ACDC

Witnesses with a known URL are queried directly for their own receipts;
otherwise the agent's receipt list is filtered by witness AID.
"""

import logging
from typing import Any, Dict, List, Optional

import httpx

from delegation_verifier.acdc.exceptions import CredentialNotFoundError
from delegation_verifier.core import config as settings
from delegation_verifier.keri.exceptions import UnavailableError

from .base import EventSource

log = logging.getLogger(__name__)


class HttpEventSource(EventSource):
    """EventSource backed by an HTTP agent.

    Args:
        base_url: Agent base URL, e.g. "http://localhost:3902".
        timeout: Per-request timeout in seconds (default FETCH_TIMEOUT_SECONDS).
        witness_urls: Optional witness AID -> base URL for direct receipt queries.
        transport: Optional httpx transport (tests use httpx.MockTransport).
    """

    def __init__(
        self,
        base_url: str,
        timeout: Optional[float] = None,
        witness_urls: Optional[Dict[str, str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout if timeout is not None else settings.FETCH_TIMEOUT_SECONDS
        self._witness_urls = {aid: url.rstrip("/") for aid, url in (witness_urls or {}).items()}
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout, transport=self._transport)

    async def _get_json(self, url: str) -> Optional[Any]:
        """GET a JSON document; None on 404.

        Raises:
            UnavailableError: On timeout, transport error, non-2xx status or bad JSON.
        """
        try:
            async with self._client() as client:
                response = await client.get(url)
                if response.status_code == 404:
                    return None
                response.raise_for_status()
                return response.json()
        except httpx.TimeoutException:
            raise UnavailableError(f"Timeout fetching {url}")
        except httpx.HTTPStatusError as e:
            raise UnavailableError(f"HTTP {e.response.status_code} from {url}")
        except httpx.HTTPError as e:
            raise UnavailableError(f"Request to {url} failed: {e}")
        except ValueError as e:
            raise UnavailableError(f"Invalid JSON from {url}: {e}")

    async def fetch_log(self, aid: str) -> List[Dict[str, Any]]:
        url = self._base_url + settings.HTTP_LOG_PATH.format(aid=aid)
        data = await self._get_json(url)
        if data is None:
            raise UnavailableError(f"No KEL available for {aid}")
        if not isinstance(data, list):
            raise UnavailableError(f"Expected a list of events from {url}")
        log.debug(f"Fetched {len(data)} events for {aid[:16]}...")
        return data

    async def fetch_witness_receipts(self, aid: str, sequence: int) -> List[Dict[str, Any]]:
        url = self._base_url + settings.HTTP_RECEIPTS_PATH.format(aid=aid, sn=format(sequence, "x"))
        data = await self._get_json(url)
        if data is None:
            return []
        if not isinstance(data, list):
            raise UnavailableError(f"Expected a list of receipts from {url}")
        return data

    async def fetch_credential(self, said: str) -> Dict[str, Any]:
        url = self._base_url + settings.HTTP_CREDENTIAL_PATH.format(said=said)
        data = await self._get_json(url)
        if data is None:
            raise CredentialNotFoundError(f"Credential {said} not found")
        if not isinstance(data, dict):
            raise UnavailableError(f"Expected a credential object from {url}")
        return data

    async def query_witness(self, witness_id: str, aid: str, sequence: int) -> List[Dict[str, Any]]:
        """Receipts one witness holds for (aid, sequence)."""
        witness_url = self._witness_urls.get(witness_id)
        if witness_url is None:
            receipts = await self.fetch_witness_receipts(aid, sequence)
        else:
            url = witness_url + settings.HTTP_RECEIPTS_PATH.format(aid=aid, sn=format(sequence, "x"))
            receipts = await self._get_json(url) or []
        return [r for r in receipts if isinstance(r, dict) and r.get("i") == witness_id]
