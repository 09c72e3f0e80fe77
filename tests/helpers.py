"""Builders shared by the round protocol tests."""

import time
from typing import List, Optional

from veilbrawl.config import Settings
from veilbrawl.models.plan import RoundPlan
from veilbrawl.models.requests import CommitRoundPlanRequest, RevealRoundPlanRequest
from veilbrawl.services.events import EventBus
from veilbrawl.services.proof_oracle import (
    OracleUnavailable,
    ProofOracle,
    VerificationResult,
)
from veilbrawl.services.record_store import InMemoryRecordStore
from veilbrawl.services.round_protocol import RoundProtocol
from veilbrawl.utils.commit_reveal import commit_plan

ALICE = "GALICE7XQ2"
BOB = "GBOB4ZK9P1"
MATCH_ID = "match-0001"


class RecordingOracle(ProofOracle):
    """Oracle double that records calls and can fail transiently."""

    backend = "external"

    def __init__(self, accept: bool = True, failures: int = 0):
        self.accept = accept
        self.failures = failures
        self.calls = []

    async def verify(self, proof, public_inputs, context):
        self.calls.append(context)
        if self.failures > 0:
            self.failures -= 1
            raise OracleUnavailable("verifier unreachable")
        return VerificationResult(self.accept, self.backend)


def make_settings(**overrides) -> Settings:
    values = {"transient_retry_base_ms": 0, "resolution_lock_owner": "test-host:1"}
    values.update(overrides)
    return Settings(_env_file=None, **values)


def make_protocol(oracle: Optional[ProofOracle] = None, clock=time.time, **overrides):
    store = InMemoryRecordStore()
    events = EventBus()
    events.history = []
    protocol = RoundProtocol(
        store=store,
        oracle=oracle or RecordingOracle(),
        settings=make_settings(**overrides),
        events=events,
        clock=clock,
    )
    return protocol, store


async def start_match(protocol: RoundProtocol, match_id: str = MATCH_ID, format: str = "best_of_3"):
    await protocol.matches.create(ALICE, BOB, format, match_id=match_id)
    return await protocol.matches.start(match_id)


class PlanFixture:
    """Matching commit and reveal requests for one player's round plan."""

    def __init__(self, address: str, moves: List[str], round_number: int = 1,
                 surge: Optional[str] = None, match_id: str = MATCH_ID, turn_number: int = 1):
        self.address = address
        self.moves = list(moves)
        self.surge = surge
        self.commitment, self.nonce = commit_plan(
            match_id, round_number, turn_number, address, surge, self.moves
        )
        plan = RoundPlan(move=self.moves[0], movePlan=self.moves, surgeCardId=surge)
        self.commit = CommitRoundPlanRequest(
            address=address,
            round_number=round_number,
            turn_number=turn_number,
            commitment=self.commitment,
            proof="base64:cHJvb2Y=",
            public_inputs=[self.commitment],
            transcript_hash=self.nonce,
            encrypted_plan=plan.encode(),
        )
        self.reveal = RevealRoundPlanRequest(
            address=address,
            round_number=round_number,
            turn_number=turn_number,
            move=self.moves[0],
            move_plan=self.moves,
            surge_card_id=surge,
            proof="base64:cHJvb2Y=",
            public_inputs=[self.commitment],
            transcript_hash=self.nonce,
        )


def event_names(protocol: RoundProtocol) -> List[str]:
    return [m["event"] for m in protocol.events.history]
