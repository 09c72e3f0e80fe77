"""Commit store: one RoundCommit per (match, round, player)."""

import logging
import time
from typing import List, Optional, Tuple

from veilbrawl.errors import StateConflict, UniqueViolation
from veilbrawl.models.match import RoundCommit
from veilbrawl.services.record_store import RecordStore

logger = logging.getLogger(__name__)

TABLE = "round_private_commits"


class CommitStore:
    """Repository over the round_private_commits table."""

    def __init__(self, store: RecordStore):
        self.store = store

    @staticmethod
    def _key(match_id: str, round_number: int, player_address: str) -> dict:
        return {"match_id": match_id, "round_number": round_number, "player_address": player_address}

    async def get(self, match_id: str, round_number: int, player_address: str) -> Optional[RoundCommit]:
        row = await self.store.get(TABLE, self._key(match_id, round_number, player_address))
        return RoundCommit.from_row(row) if row else None

    async def get_unresolved(self, match_id: str, round_number: int, player_address: str) -> Optional[RoundCommit]:
        filters = {**self._key(match_id, round_number, player_address), "resolved_round_id": None}
        row = await self.store.get(TABLE, filters)
        return RoundCommit.from_row(row) if row else None

    async def list_round(self, match_id: str, round_number: int) -> List[RoundCommit]:
        rows = await self.store.select(TABLE, {"match_id": match_id, "round_number": round_number})
        return [RoundCommit.from_row(r) for r in rows]

    async def save(self, commit: RoundCommit) -> RoundCommit:
        """
        Insert or overwrite a commit while it is still unresolved.

        Raises:
            StateConflict: If the existing row is already linked to a resolved round
        """
        key = self._key(commit.match_id, commit.round_number, commit.player_address)
        changes = commit.to_row()
        changes.pop("id", None)
        changes["resolved_round_id"] = None
        changes["resolved_at"] = None

        for _ in range(2):
            existing = await self.store.get(TABLE, key)
            if existing is not None:
                if existing.get("resolved_round_id"):
                    raise StateConflict("Round already resolved; commitment is immutable")
                updated = await self.store.update(TABLE, {**key, "resolved_round_id": None}, changes)
                if updated:
                    return RoundCommit.from_row(updated[0])
                raise StateConflict("Round already resolved; commitment is immutable")
            try:
                row = await self.store.insert(TABLE, changes)
                return RoundCommit.from_row(row)
            except UniqueViolation:
                # Lost an insert race; retry through the update path
                continue
        raise StateConflict("Concurrent commit for the same round")

    async def insert_if_absent(self, commit: RoundCommit) -> bool:
        """Insert a synthetic commit unless the player already has one."""
        try:
            await self.store.insert(TABLE, commit.to_row())
            return True
        except UniqueViolation:
            return False

    async def mark_revealed(self, commit: RoundCommit, move: str, move_plan: List[str],
                            surge_card_id: Optional[str]) -> Optional[RoundCommit]:
        filters = {**self._key(commit.match_id, commit.round_number, commit.player_address),
                   "resolved_round_id": None}
        rows = await self.store.update(TABLE, filters, {
            "revealed_at": time.time(),
            "revealed_move": move,
            "revealed_plan": list(move_plan),
            "revealed_surge": surge_card_id,
        })
        return RoundCommit.from_row(rows[0]) if rows else None

    async def mark_verified(self, match_id: str, round_number: int, player_address: str) -> None:
        filters = {**self._key(match_id, round_number, player_address), "resolved_round_id": None}
        await self.store.update(TABLE, filters, {"verified_at": time.time()})

    async def set_onchain_tx(self, match_id: str, round_number: int, player_address: str, tx_ref: str) -> None:
        await self.store.update(TABLE, self._key(match_id, round_number, player_address),
                                {"onchain_commit_tx_hash": tx_ref})

    async def committed_flags(self, match_id: str, round_number: int,
                              player1_address: str, player2_address: str) -> Tuple[bool, bool]:
        """Whether each player has an unresolved commit for the round."""
        rows = await self.store.select(TABLE, {
            "match_id": match_id,
            "round_number": round_number,
            "resolved_round_id": None,
        })
        players = {r["player_address"] for r in rows}
        return player1_address in players, player2_address in players

    async def resolved_round_id(self, match_id: str, round_number: int) -> Optional[str]:
        """Round id linked from any commit of this round, if resolution finished."""
        for commit in await self.list_round(match_id, round_number):
            if commit.resolved_round_id:
                return commit.resolved_round_id
        return None

    async def link_resolution(self, match_id: str, round_number: int, resolved_round_id: str) -> int:
        """Link every still-unresolved commit of the round to its resolution."""
        rows = await self.store.update(
            TABLE,
            {"match_id": match_id, "round_number": round_number, "resolved_round_id": None},
            {"resolved_round_id": resolved_round_id, "resolved_at": time.time()},
        )
        logger.debug("Linked %s commits of %s/%s to round %s", len(rows), match_id, round_number, resolved_round_id)
        return len(rows)
