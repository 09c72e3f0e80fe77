"""On-chain anchoring collaborator and the bounded outbound task set.

Anchor submissions are fire-and-forget: the round protocol schedules them on
OutboundTasks and never waits on them for correctness. Failures are retried
with linear backoff, then logged.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Set

import httpx

from veilbrawl.utils.retry import RetryExhausted, retry_async

logger = logging.getLogger(__name__)


class AnchorError(Exception):
    """Retryable failure talking to the anchor service."""


class AnchorClient:
    """Interface for submitting commitments and verifications on-chain."""

    configured = False

    async def submit_commitment(self, match_id: str, round_number: int, player_address: str,
                                commitment: str) -> Optional[str]:
        raise NotImplementedError

    async def submit_verification(self, match_id: str, round_number: int, player_address: str,
                                  commitment: str, public_inputs: Any) -> Optional[str]:
        raise NotImplementedError


class NullAnchor(AnchorClient):
    """No anchoring configured; every submission is a no-op."""

    async def submit_commitment(self, match_id, round_number, player_address, commitment):
        return None

    async def submit_verification(self, match_id, round_number, player_address, commitment, public_inputs):
        return None


class HttpAnchor(AnchorClient):
    """Posts anchor requests to an HTTP relay that signs and submits transactions."""

    configured = True

    def __init__(self, base_url: str, timeout_seconds: float = 10.0,
                 client: Optional[httpx.AsyncClient] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self._client = client

    async def _post(self, path: str, body: Dict[str, Any]) -> Optional[str]:
        try:
            if self._client is not None:
                response = await self._client.post(f"{self.base_url}{path}", json=body)
            else:
                async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                    response = await client.post(f"{self.base_url}{path}", json=body)
        except httpx.HTTPError as exc:
            raise AnchorError(f"anchor request failed: {exc}") from exc
        if response.status_code >= 500 or response.status_code == 429:
            raise AnchorError(f"anchor returned {response.status_code}")
        if response.status_code >= 400:
            logger.warning("Anchor rejected %s: %s %s", path, response.status_code, response.text[:200])
            return None
        return response.json().get("txRef")

    async def submit_commitment(self, match_id, round_number, player_address, commitment):
        return await self._post("/commitments", {
            "matchId": match_id,
            "roundNumber": round_number,
            "playerAddress": player_address,
            "commitment": commitment,
        })

    async def submit_verification(self, match_id, round_number, player_address, commitment, public_inputs):
        return await self._post("/verifications", {
            "matchId": match_id,
            "roundNumber": round_number,
            "playerAddress": player_address,
            "commitment": commitment,
            "publicInputs": public_inputs,
        })


def build_anchor(settings=None) -> AnchorClient:
    if settings is None:
        from veilbrawl.config import settings
    if settings.anchor_configured:
        return HttpAnchor(settings.anchor_url, settings.anchor_timeout_seconds)
    return NullAnchor()


class OutboundTasks:
    """Bounded set of fire-and-forget background tasks."""

    def __init__(self, limit: int = 64):
        self.limit = limit
        self._tasks: Set[asyncio.Task] = set()

    def __len__(self) -> int:
        return len(self._tasks)

    def spawn(self, factory: Callable[[], Awaitable[Any]], label: str) -> bool:
        """Schedule work; returns False (and drops it) when the set is full."""
        if len(self._tasks) >= self.limit:
            logger.warning("Outbound task set full; dropping %s", label)
            return False
        task = asyncio.create_task(self._run(factory, label))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return True

    @staticmethod
    async def _run(factory: Callable[[], Awaitable[Any]], label: str) -> None:
        try:
            await factory()
        except RetryExhausted as exc:
            logger.warning("%s gave up after %s attempts: %s", label, exc.attempts, exc.last_exception)
        except Exception:
            logger.exception("%s failed", label)

    async def drain(self) -> None:
        """Wait for every scheduled task (tests and shutdown)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


async def anchor_commit(anchor: AnchorClient, on_commit_tx: Callable[[str], Awaitable[None]],
                        match_id: str, round_number: int, player_address: str, commitment: str,
                        public_inputs: Any, attempts: int = 4, base_delay_ms: int = 200) -> None:
    """Submit a commitment and then its verification, retrying transient failures."""
    tx_ref = await retry_async(
        lambda: anchor.submit_commitment(match_id, round_number, player_address, commitment),
        attempts=attempts, base_delay_ms=base_delay_ms, retry_on=(AnchorError,),
        label="submitCommitment",
    )
    if tx_ref:
        await on_commit_tx(tx_ref)
    await retry_async(
        lambda: anchor.submit_verification(match_id, round_number, player_address, commitment, public_inputs),
        attempts=attempts, base_delay_ms=base_delay_ms, retry_on=(AnchorError,),
        label="submitVerification",
    )
