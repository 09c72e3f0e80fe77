"""Match, round and turn persistence over the record store."""

import logging
import time
import uuid
from typing import Callable, Optional

from veilbrawl.errors import InvalidRequest, MatchNotFound, StateConflict, UniqueViolation
from veilbrawl.models.combat import TurnOutcome
from veilbrawl.models.match import Match
from veilbrawl.services.record_store import RecordStore

logger = logging.getLogger(__name__)


class MatchStore:
    """Repository for matches and their played rounds/turns."""

    def __init__(self, store: RecordStore, clock: Callable[[], float] = time.time):
        self.store = store
        self.clock = clock

    async def create(self, player1_address: str, player2_address: str, format: str = "best_of_3",
                     match_id: Optional[str] = None) -> Match:
        if player1_address.lower() == player2_address.lower():
            raise InvalidRequest("A match needs two distinct players")
        match = Match(
            id=match_id or str(uuid.uuid4()),
            player1_address=player1_address,
            player2_address=player2_address,
            format=format,
            round_started_at=self.clock(),
        )
        try:
            await self.store.insert("matches", match.to_row())
        except UniqueViolation:
            raise StateConflict(f"Match {match.id} already exists") from None
        logger.info("Created match %s (%s)", match.id, format)
        return match

    async def get(self, match_id: str) -> Optional[Match]:
        row = await self.store.get("matches", {"id": match_id})
        return Match.from_row(row) if row else None

    async def require(self, match_id: str) -> Match:
        match = await self.get(match_id)
        if match is None:
            raise MatchNotFound(f"Match {match_id} not found")
        return match

    async def save(self, match: Match) -> None:
        row = match.to_row()
        row.pop("id")
        await self.store.update("matches", {"id": match.id}, row)

    async def save_round_result(self, match: Match, round_number: int) -> bool:
        """
        Persist a match advanced past round_number, but only if the stored
        match is still playing that round.

        Returns:
            False if another resolver already advanced or ended the match
        """
        row = match.to_row()
        row.pop("id")
        rows = await self.store.update(
            "matches",
            {"id": match.id, "status": "in_progress", "current_round": round_number},
            row,
        )
        return bool(rows)

    async def forfeit(self, match: Match, winner_role: str) -> bool:
        """
        Complete a match in favour of winner_role, credited with the rounds
        the format needs.

        Returns:
            False if the match left match.status in the meantime
        """
        rows = await self.store.update(
            "matches",
            {"id": match.id, "status": match.status},
            {
                "status": "completed",
                "winner_address": match.address_of(winner_role),
                f"{winner_role}_rounds_won": match.rounds_to_win,
                "ended_reason": "forfeit",
            },
        )
        return bool(rows)

    async def start(self, match_id: str) -> Match:
        """Move a match from character select into play."""
        match = await self.require(match_id)
        if match.status != "character_select":
            raise StateConflict(f"Match is {match.status}, cannot start")
        match.status = "in_progress"
        match.round_started_at = self.clock()
        await self.save(match)
        return match

    async def open_round(self, match_id: str, round_number: int) -> str:
        """Create (or reuse after a takeover) the round row; returns its id."""
        row = await self.store.upsert(
            "rounds",
            {"match_id": match_id, "round_number": round_number, "started_at": self.clock()},
            conflict_keys=("match_id", "round_number"),
        )
        return row["id"]

    async def record_turn(self, round_id: str, turn_number: int, outcome: TurnOutcome) -> None:
        await self.store.upsert(
            "turns",
            {"round_id": round_id, "turn_number": turn_number, **outcome.to_dict()},
            conflict_keys=("round_id", "turn_number"),
        )

    async def close_round(self, round_id: str, winner_address: Optional[str], ended_by: str) -> None:
        await self.store.update("rounds", {"id": round_id}, {
            "winner_address": winner_address,
            "ended_by": ended_by,
            "completed_at": self.clock(),
        })
