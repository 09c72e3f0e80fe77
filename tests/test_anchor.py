"""Tests for bounded retry and the on-chain anchor collaborator."""

import asyncio
import json

import httpx
import pytest

from helpers import ALICE, MATCH_ID, PlanFixture, RecordingOracle, make_settings, start_match
from veilbrawl.services.anchor import AnchorError, HttpAnchor, OutboundTasks, anchor_commit
from veilbrawl.services.events import EventBus
from veilbrawl.services.record_store import InMemoryRecordStore
from veilbrawl.services.round_protocol import RoundProtocol
from veilbrawl.utils.retry import RetryExhausted, retry_async


def run(coro):
    return asyncio.run(coro)


class Flaky:
    def __init__(self, failures, exc=ConnectionError):
        self.failures = failures
        self.exc = exc
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.exc("boom")
        return "ok"


class TestRetry:
    """Test retry_async."""

    def test_succeeds_after_transient_failures(self):
        """Retryable errors are retried until success."""
        op = Flaky(2)
        assert run(retry_async(op, attempts=4, base_delay_ms=0, retry_on=(ConnectionError,))) == "ok"
        assert op.calls == 3

    def test_gives_up(self):
        """After the attempt limit RetryExhausted carries the last error."""
        op = Flaky(10)
        with pytest.raises(RetryExhausted) as info:
            run(retry_async(op, attempts=3, base_delay_ms=0, retry_on=(ConnectionError,)))
        assert info.value.attempts == 3
        assert isinstance(info.value.last_exception, ConnectionError)
        assert op.calls == 3

    def test_non_retryable_propagates(self):
        """Errors outside retry_on are raised on the first attempt."""
        op = Flaky(1, exc=KeyError)
        with pytest.raises(KeyError):
            run(retry_async(op, attempts=4, base_delay_ms=0, retry_on=(ConnectionError,)))
        assert op.calls == 1


def mock_anchor(handler):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HttpAnchor("http://anchor.local/", client=client)


class TestHttpAnchor:
    """Test the HTTP anchor relay client."""

    def test_returns_tx_ref(self):
        """Successful submissions return the relay's txRef."""
        seen = []

        def handler(request):
            seen.append((request.url.path, json.loads(request.content)))
            return httpx.Response(200, json={"txRef": "tx-1"})

        tx = run(mock_anchor(handler).submit_commitment(MATCH_ID, 1, ALICE, "0x01"))
        assert tx == "tx-1"
        assert seen == [("/commitments", {
            "matchId": MATCH_ID, "roundNumber": 1, "playerAddress": ALICE, "commitment": "0x01",
        })]

    def test_server_errors_are_retryable(self):
        """5xx responses raise AnchorError."""
        anchor = mock_anchor(lambda request: httpx.Response(503))
        with pytest.raises(AnchorError):
            run(anchor.submit_commitment(MATCH_ID, 1, ALICE, "0x01"))

    def test_client_errors_are_dropped(self):
        """4xx responses are logged and yield no tx."""
        anchor = mock_anchor(lambda request: httpx.Response(400, text="bad"))
        assert run(anchor.submit_commitment(MATCH_ID, 1, ALICE, "0x01")) is None

    def test_anchor_commit_retries(self):
        """anchor_commit retries both submissions and records the commit tx."""
        responses = [httpx.Response(503), httpx.Response(200, json={"txRef": "tx-7"}),
                     httpx.Response(503), httpx.Response(200, json={"txRef": "tx-8"})]
        recorded = []

        async def on_tx(tx):
            recorded.append(tx)

        anchor = mock_anchor(lambda request: responses.pop(0))
        run(anchor_commit(anchor, on_tx, MATCH_ID, 1, ALICE, "0x01", ["0x01"], base_delay_ms=0))
        assert recorded == ["tx-7"]
        assert responses == []


class TestOutboundTasks:
    """Test the bounded background task set."""

    def test_limit_drops_extra_work(self):
        """Work beyond the limit is dropped, scheduled work completes."""
        done = []

        async def scenario():
            tasks = OutboundTasks(limit=1)

            async def work():
                done.append(1)

            accepted = [tasks.spawn(work, "a"), tasks.spawn(work, "b")]
            await tasks.drain()
            return accepted

        assert run(scenario()) == [True, False]
        assert done == [1]

    def test_failures_are_logged_not_raised(self):
        """A failing task does not break drain()."""
        async def scenario():
            tasks = OutboundTasks()

            async def broken():
                raise RetryExhausted(4, AnchorError("down"))

            tasks.spawn(broken, "broken")
            await tasks.drain()
            return len(tasks)

        assert run(scenario()) == 0


class TestCommitAnchoring:
    """Test anchoring triggered by a commit."""

    def test_commit_records_onchain_tx(self):
        """A configured anchor stores the commit transaction reference."""
        store = InMemoryRecordStore()

        def handler(request):
            return httpx.Response(200, json={"txRef": f"tx{request.url.path}"})

        async def scenario():
            protocol = RoundProtocol(
                store=store,
                oracle=RecordingOracle(),
                settings=make_settings(),
                anchor=mock_anchor(handler),
                events=EventBus(),
            )
            await start_match(protocol)
            await protocol.commit(MATCH_ID, PlanFixture(ALICE, ["kick"] * 10).commit)
            await protocol.outbound.drain()
            return await store.get("round_private_commits", {"player_address": ALICE})

        assert run(scenario())["onchain_commit_tx_hash"] == "tx/commitments"
