"""Commit-reveal round protocol.

This module handles:
- Commit: validate, verify the proof, store the commitment, announce readiness
- Forced "stunned" commits for stunned opponents and timed-out players
- Reveal: binding checks against the stored commitment, optional re-verification
- Resolution: lock the round, play it out, link commits and advance the match
- Forfeit
- Read-only round status

Round phases: AwaitingCommits -> BothCommitted -> AwaitingReveals ->
BothRevealed -> Resolving -> Resolved. A round left unresolved when the match
ends (by forfeit) is Abandoned.
"""

import logging
import time
import uuid
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

from veilbrawl.constants import (
    ALL_MOVES,
    AUTO_STUNNED_PREFIX,
    AUTO_TIMEOUT_PREFIX,
    PLAN_LENGTH,
    POWER_SURGE_CARD_IDS,
)
from veilbrawl.errors import (
    BindingConflict,
    InvalidRequest,
    NotParticipant,
    StateConflict,
    TransientFailure,
)
from veilbrawl.models.combat import TurnOutcome
from veilbrawl.models.match import Match, RoundCommit
from veilbrawl.models.plan import PlanDecodeError, RoundPlan, stunned_plan
from veilbrawl.models.requests import CommitRoundPlanRequest, RevealRoundPlanRequest
from veilbrawl.models.responses import (
    AlreadyResolved,
    CommitResponse,
    RevealResponse,
    RoundResolution,
    RoundStatusResponse,
    TurnResult,
    ZkVerification,
)
from veilbrawl.services.anchor import AnchorClient, NullAnchor, OutboundTasks, anchor_commit
from veilbrawl.services.commit_store import CommitStore
from veilbrawl.services.events import EventBus
from veilbrawl.services.match_store import MatchStore
from veilbrawl.services.playback import PlaybackResult, apply_round_result, play_match_round
from veilbrawl.services.proof_oracle import (
    OracleUnavailable,
    ProofOracle,
    VerificationContext,
    VerificationResult,
)
from veilbrawl.services.record_store import RecordStore
from veilbrawl.services.resolution_lock import LockStatus, ResolutionLock
from veilbrawl.services.surge import draw_round_deck
from veilbrawl.utils.commit_reveal import (
    CommitmentError,
    canonical_json,
    compute_round_plan_commitment,
    extract_public_commitment,
    normalize_hex32,
    parse_nonce,
)
from veilbrawl.utils.retry import RetryExhausted, retry_async

logger = logging.getLogger(__name__)


class RoundPhase(str, Enum):
    AWAITING_COMMITS = "awaiting_commits"
    BOTH_COMMITTED = "both_committed"
    AWAITING_REVEALS = "awaiting_reveals"
    BOTH_REVEALED = "both_revealed"
    RESOLVING = "resolving"
    RESOLVED = "resolved"
    ABANDONED = "abandoned"


class RoundProtocol:
    """Orchestrates commits, reveals and resolution for every match round."""

    def __init__(
        self,
        store: RecordStore,
        oracle: ProofOracle,
        settings,
        anchor: Optional[AnchorClient] = None,
        events: Optional[EventBus] = None,
        outbound: Optional[OutboundTasks] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.settings = settings
        self.matches = MatchStore(store, clock=clock)
        self.commits = CommitStore(store)
        self.lock = ResolutionLock(store, settings.resolution_lock_stale_seconds, clock=clock)
        self.oracle = oracle
        self.anchor = anchor or NullAnchor()
        self.events = events or EventBus(settings.event_queue_size)
        self.outbound = outbound or OutboundTasks(settings.outbound_task_limit)
        self.clock = clock

    # ------------------------------------------------------------------
    # Shared checks
    # ------------------------------------------------------------------

    async def _participant(self, match_id: str, address: str) -> Tuple[Match, str]:
        match = await self.matches.require(match_id)
        role = match.role_of(address)
        if role is None:
            raise NotParticipant("Address is not a participant in this match")
        return match, role

    def _ensure_operating_mode(self) -> None:
        if not self.settings.zk_strict_mode:
            return
        if self.oracle.backend == "disabled":
            raise StateConflict("Strict mode refuses to run with ZK verification disabled")
        if self.settings.onchain_gate_enabled and not self.anchor.configured:
            raise StateConflict("Strict mode requires the on-chain gate to be configured")

    async def _verify(self, proof: str, public_inputs, context: VerificationContext) -> VerificationResult:
        try:
            result = await retry_async(
                lambda: self.oracle.verify(proof, public_inputs, context),
                attempts=self.settings.transient_retry_attempts,
                base_delay_ms=self.settings.transient_retry_base_ms,
                retry_on=(OracleUnavailable,),
                label="proof verification",
            )
        except RetryExhausted as exc:
            raise TransientFailure(f"Proof verification unavailable: {exc.last_exception}") from exc
        if not result.accepted:
            raise InvalidRequest("Proof rejected by verifier", {"backend": result.backend})
        return result

    def _deadline(self, match: Match) -> float:
        return match.round_started_at + self.settings.move_timer_seconds

    # ------------------------------------------------------------------
    # Synthesized commits
    # ------------------------------------------------------------------

    async def _insert_forced_commit(self, match: Match, round_number: int, role: str, prefix: str) -> bool:
        address = match.address_of(role)
        now = self.clock()
        plan = stunned_plan()
        inserted = await self.commits.insert_if_absent(RoundCommit(
            match_id=match.id,
            round_number=round_number,
            player_address=address,
            commitment=f"{prefix}:{match.id}:{round_number}:{address}",
            encrypted_plan=plan.encode(),
            verified_at=now,
            revealed_at=now,
            revealed_move=plan.move,
            revealed_plan=list(plan.move_plan),
            revealed_surge=None,
        ))
        if inserted:
            logger.info("Inserted %s commit for %s in %s/%s", prefix, address, match.id, round_number)
            self.events.emit(match.id, "round_plan_committed", {
                "roundNumber": round_number,
                "playerAddress": address,
                "forced": prefix,
            })
        return inserted

    async def _auto_commit_stunned(self, match: Match, round_number: int, role: str) -> None:
        if match.is_stunned(role):
            await self._insert_forced_commit(match, round_number, role, AUTO_STUNNED_PREFIX)

    async def _auto_commit_timeout(self, match: Match, round_number: int) -> List[str]:
        if self.clock() <= self._deadline(match):
            return []
        p1, p2 = await self.commits.committed_flags(match.id, round_number,
                                                    match.player1_address, match.player2_address)
        forced = []
        for role, committed in (("player1", p1), ("player2", p2)):
            if not committed and await self._insert_forced_commit(match, round_number, role, AUTO_TIMEOUT_PREFIX):
                forced.append(role)
        return forced

    # ------------------------------------------------------------------
    # Commit
    # ------------------------------------------------------------------

    async def commit(self, match_id: str, req: CommitRoundPlanRequest) -> CommitResponse:
        """
        Commit a hidden round plan.

        Raises:
            InvalidRequest: Malformed input or rejected proof (400)
            NotParticipant: Caller is not in the match (403)
            MatchNotFound: Unknown match (404)
            StateConflict: Commitment mismatch, wrong round, strict-mode refusal (409)
            TransientFailure: Verifier unreachable after retries (503)
        """
        if req.round_number < 1 or req.turn_number < 1:
            raise InvalidRequest("roundNumber and turnNumber must be >= 1")
        try:
            commitment = normalize_hex32(req.commitment)
        except CommitmentError as exc:
            raise InvalidRequest(str(exc)) from None
        if not req.transcript_hash:
            raise InvalidRequest("transcriptHash is required")
        try:
            parse_nonce(req.transcript_hash)
        except CommitmentError as exc:
            raise InvalidRequest(str(exc)) from None
        if self.settings.onchain_gate_enabled and req.public_inputs is None:
            raise InvalidRequest("publicInputs are required when the on-chain gate is enabled")
        try:
            plan = RoundPlan.decode(req.encrypted_plan)
        except PlanDecodeError as exc:
            raise InvalidRequest(str(exc)) from None
        try:
            bound = extract_public_commitment(req.public_inputs)
        except CommitmentError as exc:
            raise InvalidRequest(f"Invalid publicInputs: {exc}") from None

        match, role = await self._participant(match_id, req.address)
        if match.status != "in_progress":
            raise InvalidRequest(f"Match is not in progress (status: {match.status})")
        if req.round_number != match.current_round:
            raise StateConflict(f"Round {req.round_number} is not the current round ({match.current_round})")
        if plan.surge_card_id and plan.surge_card_id not in draw_round_deck(match.id, req.round_number):
            raise InvalidRequest(f"Surge card {plan.surge_card_id} was not offered this round")
        self._ensure_operating_mode()

        if bound is not None and bound != commitment:
            raise StateConflict("Commitment mismatch", {"commitment": commitment, "publicInputs": bound})

        address = match.address_of(role)
        existing = await self.commits.get_unresolved(match.id, req.round_number, address)
        if existing is not None and existing.is_revealed:
            if existing.is_synthetic:
                raise StateConflict("A stunned plan was already forced for this round")
            raise StateConflict("Plan already revealed for this round")

        verified_at = None
        if self.settings.zk_verify_commit_proof:
            await self._verify(req.proof, req.public_inputs, VerificationContext(
                match.id, address, req.round_number, req.transcript_hash))
            verified_at = self.clock()

        await self.commits.save(RoundCommit(
            match_id=match.id,
            round_number=req.round_number,
            player_address=address,
            commitment=commitment,
            encrypted_plan=req.encrypted_plan,
            transcript_hash=req.transcript_hash,
            proof_public_inputs=req.public_inputs,
            commit_turn=req.turn_number,
            verified_at=verified_at,
        ))
        self.events.progress(match.id, req.round_number, "commit_stored", playerAddress=address)

        if self.anchor.configured:
            self.outbound.spawn(
                lambda: anchor_commit(
                    self.anchor,
                    lambda tx: self.commits.set_onchain_tx(match.id, req.round_number, address, tx),
                    match.id, req.round_number, address, commitment, req.public_inputs,
                    attempts=self.settings.transient_retry_attempts,
                    base_delay_ms=self.settings.transient_retry_base_ms,
                ),
                label=f"anchor {match.id}/{req.round_number}/{address}",
            )

        opponent_role = match.opponent_of(role)
        await self._auto_commit_stunned(match, req.round_number, opponent_role)

        p1, p2 = await self.commits.committed_flags(match.id, req.round_number,
                                                    match.player1_address, match.player2_address)
        self.events.emit(match.id, "round_plan_committed", {
            "roundNumber": req.round_number,
            "playerAddress": address,
            "player1Committed": p1,
            "player2Committed": p2,
        })
        if p1 and p2:
            self.events.emit(match.id, "round_plan_ready", {"roundNumber": req.round_number})

        return CommitResponse(
            player1_committed=p1,
            player2_committed=p2,
            both_committed=p1 and p2,
            zk_verification=ZkVerification(backend=self.oracle.backend),
        )

    # ------------------------------------------------------------------
    # Reveal
    # ------------------------------------------------------------------

    @staticmethod
    def _validate_reveal(req: RevealRoundPlanRequest) -> None:
        if req.round_number < 1 or req.turn_number < 1:
            raise InvalidRequest("roundNumber and turnNumber must be >= 1")
        if req.move not in ALL_MOVES:
            raise InvalidRequest(f"Invalid move: {req.move}")
        if len(req.move_plan) != PLAN_LENGTH:
            raise InvalidRequest(f"movePlan must contain exactly {PLAN_LENGTH} moves")
        invalid = [m for m in req.move_plan if m not in ALL_MOVES]
        if invalid:
            raise InvalidRequest(f"Invalid moves in movePlan: {invalid}")
        if req.surge_card_id is not None and req.surge_card_id not in POWER_SURGE_CARD_IDS:
            raise InvalidRequest(f"Unknown surge card: {req.surge_card_id}")
        if not req.transcript_hash:
            raise InvalidRequest("transcriptHash is required")

    def _check_binding(self, match: Match, commit: RoundCommit, req: RevealRoundPlanRequest) -> None:
        try:
            committed = RoundPlan.decode(commit.encrypted_plan or "")
        except PlanDecodeError as exc:
            raise StateConflict(f"Stored plan is unreadable: {exc}") from None

        if committed.move != req.move:
            raise BindingConflict("Revealed move does not match committed move")
        if list(committed.move_plan) != list(req.move_plan):
            raise BindingConflict("Revealed movePlan does not match committed movePlan")
        if committed.surge_card_id != req.surge_card_id:
            raise BindingConflict("Revealed surge card does not match committed surge card")
        if (commit.transcript_hash or "").strip() != req.transcript_hash.strip():
            raise BindingConflict("Transcript hash does not match commit")

        expected = compute_round_plan_commitment(
            match.id,
            commit.round_number,
            commit.commit_turn,
            commit.player_address,
            req.surge_card_id,
            commit.transcript_hash,
            req.move_plan,
        )
        if expected != commit.commitment:
            raise BindingConflict("Reveal does not match committed commitment", {
                "expected": expected,
                "committed": commit.commitment,
            })

        if req.public_inputs is not None and commit.proof_public_inputs is not None:
            if canonical_json(req.public_inputs) != canonical_json(commit.proof_public_inputs):
                raise BindingConflict("Revealed publicInputs do not match commit")

    async def reveal(self, match_id: str, req: RevealRoundPlanRequest) -> RevealResponse:
        """
        Reveal a committed plan and resolve the round once both sides revealed.

        Returns awaitingOpponent, awaitingResolver, alreadyResolved, the
        terminal resolution, or matchOver once the match has ended.
        """
        self._validate_reveal(req)
        match, role = await self._participant(match_id, req.address)
        if match.status == "character_select":
            raise InvalidRequest("Match is not in progress (status: character_select)")
        address = match.address_of(role)
        round_number = req.round_number

        commit = await self.commits.get_unresolved(match.id, round_number, address)
        if commit is None:
            resolved_id = await self.commits.resolved_round_id(match.id, round_number)
            if resolved_id:
                return RevealResponse(already_resolved=AlreadyResolved(resolved_round_id=resolved_id))
        if match.status == "completed":
            return RevealResponse(reason="match_completed", match_over=True,
                                  match_winner_address=match.winner_address)
        if commit is None:
            return RevealResponse(awaiting_opponent=True, reason="no_commit")
        if match.status != "in_progress":
            raise InvalidRequest(f"Match is not in progress (status: {match.status})")
        self._ensure_operating_mode()

        self._check_binding(match, commit, req)

        opponent_role = match.opponent_of(role)
        await self._auto_commit_stunned(match, round_number, opponent_role)
        await self._auto_commit_timeout(match, round_number)

        p1c, p2c = await self.commits.committed_flags(match.id, round_number,
                                                      match.player1_address, match.player2_address)
        if not (p1c and p2c):
            return RevealResponse(awaiting_opponent=True, reason="awaiting_both_commits")

        opponent = await self.commits.get_unresolved(match.id, round_number, match.address_of(opponent_role))
        strict = self.settings.zk_strict_mode
        reverify = (
            self.settings.zk_reverify_on_resolve
            or commit.verified_at is None
            or (strict and (opponent is None or opponent.verified_at is None))
        )
        zk = None
        if reverify:
            result = await self._verify(
                req.proof,
                req.public_inputs if req.public_inputs is not None else commit.proof_public_inputs,
                VerificationContext(match.id, address, round_number, req.transcript_hash),
            )
            await self.commits.mark_verified(match.id, round_number, address)
            zk = ZkVerification(backend=result.backend)
            self.events.progress(match.id, round_number, "reveal_verified", playerAddress=address)

        await self.commits.mark_revealed(commit, req.move, req.move_plan, req.surge_card_id)
        self.events.emit(match.id, "round_plan_revealed", {"roundNumber": round_number, "playerAddress": address})

        commits = await self._round_commits(match, round_number)
        p1r = bool(commits.get("player1") and commits["player1"].is_revealed)
        p2r = bool(commits.get("player2") and commits["player2"].is_revealed)
        if not (p1r and p2r):
            return RevealResponse(awaiting_opponent=True, reason="awaiting_opponent_reveal",
                                  player1_revealed=p1r, player2_revealed=p2r, zk_verification=zk)

        if strict and any(c.verified_at is None for c in commits.values()):
            return RevealResponse(awaiting_opponent=True, reason="awaiting_verification",
                                  player1_revealed=p1r, player2_revealed=p2r, zk_verification=zk)

        response = await self._resolve(match.id, round_number, req.expected_winner)
        response.zk_verification = zk
        return response

    async def _round_commits(self, match: Match, round_number: int) -> Dict[str, RoundCommit]:
        result = {}
        for commit in await self.commits.list_round(match.id, round_number):
            if commit.resolved_round_id:
                continue
            role = match.role_of(commit.player_address)
            if role:
                result[role] = commit
        return result

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    async def _resolve(self, match_id: str, round_number: int, expected_winner: Optional[str]) -> RevealResponse:
        resolved_id = await self.commits.resolved_round_id(match_id, round_number)
        if resolved_id:
            return RevealResponse(already_resolved=AlreadyResolved(resolved_round_id=resolved_id))

        # Unique per acquisition so a stalled resolver can tell it was replaced
        owner = f"{self.settings.lock_owner_token}:{uuid.uuid4().hex}"
        lock = await self.lock.acquire(match_id, round_number, owner)
        if lock.status is LockStatus.ALREADY_RESOLVED:
            return RevealResponse(already_resolved=AlreadyResolved(resolved_round_id=lock.resolved_round_id))
        if lock.status is LockStatus.IN_PROGRESS:
            return RevealResponse(awaiting_resolver=True, reason="resolution_in_progress")

        self.events.progress(match_id, round_number, "resolving", degraded=lock.degraded)
        try:
            resolution = await self._play(match_id, round_number, expected_winner, owner)
        except Exception:
            logger.exception("Resolution of %s/%s failed; releasing lock", match_id, round_number)
            await self.lock.release(match_id, round_number, owner)
            raise
        if resolution is None:
            resolved_id = await self.commits.resolved_round_id(match_id, round_number)
            if resolved_id:
                return RevealResponse(already_resolved=AlreadyResolved(resolved_round_id=resolved_id))
            return RevealResponse(awaiting_resolver=True, reason="resolution_in_progress")
        self.events.progress(match_id, round_number, "resolved", roundId=resolution.round_id)
        return RevealResponse(resolution=resolution)

    async def _play(self, match_id: str, round_number: int, expected_winner: Optional[str],
                    owner: str) -> Optional[RoundResolution]:
        """
        Play a locked round out and record it.

        Returns:
            The resolution, or None when another resolver took the lock over
            while this one was playing
        """
        match = await self.matches.require(match_id)
        commits = await self._round_commits(match, round_number)
        p1, p2 = commits.get("player1"), commits.get("player2")
        if p1 is None or p2 is None or not (p1.is_revealed and p2.is_revealed):
            raise StateConflict("Both plans must be revealed before resolution")

        round_id = await self.matches.open_round(match.id, round_number)

        async def persist(turn_number: int, outcome: TurnOutcome) -> None:
            await self.matches.record_turn(round_id, turn_number, outcome)
            self.events.emit(match.id, "turn_resolved", {
                "roundNumber": round_number,
                "turnNumber": turn_number,
                "narrative": outcome.narrative,
            })

        result: PlaybackResult = await play_match_round(
            match, round_number, p1.revealed_plan, p2.revealed_plan,
            p1.revealed_surge, p2.revealed_surge, on_turn=persist,
        )
        winner_address = match.address_of(result.winner) if result.winner else None

        if not await self.lock.renew(match.id, round_number, owner):
            logger.warning("Lost resolution lock for %s/%s during playback; leaving the match untouched",
                           match.id, round_number)
            return None
        await self.matches.close_round(round_id, winner_address, result.ended_by)

        # Reload: a takeover after a crash may find the match already advanced
        match = await self.matches.require(match_id)
        applied = False
        if match.status == "in_progress" and match.current_round == round_number:
            apply_round_result(match, round_number, result, now=self.clock())
            applied = await self.matches.save_round_result(match, round_number)
            if not applied:
                match = await self.matches.require(match_id)
        match_over = match.status == "completed"

        await self.commits.link_resolution(match.id, round_number, round_id)
        if not await self.lock.mark_resolved(match.id, round_number, round_id):
            return None
        logger.info("Resolved %s round %s: winner=%s (%s)", match.id, round_number,
                    winner_address or "draw", result.ended_by)

        self.events.emit(match.id, "round_resolved", {
            "roundNumber": round_number,
            "roundId": round_id,
            "winnerAddress": winner_address,
            "player1RoundsWon": match.player1_rounds_won,
            "player2RoundsWon": match.player2_rounds_won,
        })
        if match_over and applied:
            self.events.emit(match.id, "match_ended", {"winnerAddress": match.winner_address, "reason": "rounds"})

        return RoundResolution(
            round_id=round_id,
            round_number=round_number,
            winner_address=winner_address,
            is_draw=result.is_draw,
            ended_by=result.ended_by,
            turns=[TurnResult.from_outcome(i, t) for i, t in enumerate(result.turns, start=1)],
            player1_rounds_won=match.player1_rounds_won,
            player2_rounds_won=match.player2_rounds_won,
            player1_is_stunned_next=result.player1_stunned_next,
            player2_is_stunned_next=result.player2_stunned_next,
            match_over=match_over,
            match_winner_address=match.winner_address,
            expected_winner_matched=(
                None if expected_winner is None
                else (winner_address or "").lower() == expected_winner.lower()
            ),
        )

    # ------------------------------------------------------------------
    # Forfeit
    # ------------------------------------------------------------------

    async def forfeit(self, match_id: str, address: str) -> Match:
        """
        Concede a match. The opponent wins at once; unresolved rounds are
        abandoned and later reveals report the ended match.

        Raises:
            NotParticipant: Caller is not in the match (403)
            MatchNotFound: Unknown match (404)
            StateConflict: The match has already ended (409)
        """
        match, role = await self._participant(match_id, address)
        if match.status == "completed":
            raise StateConflict("Match is already completed")
        winner_role = match.opponent_of(role)
        winner = match.address_of(winner_role)
        if not await self.matches.forfeit(match, winner_role):
            raise StateConflict("Match ended while the forfeit was being recorded")
        logger.info("Match %s forfeited by %s; %s wins", match.id, match.address_of(role), winner)
        self.events.emit(match.id, "match_ended", {
            "winnerAddress": winner,
            "reason": "forfeit",
            "forfeitedBy": match.address_of(role),
        })
        return await self.matches.require(match.id)

    # ------------------------------------------------------------------
    # Timeout and status
    # ------------------------------------------------------------------

    async def timeout(self, match_id: str, round_number: int) -> RoundStatusResponse:
        """Force stunned commits for players who missed the move deadline."""
        match = await self.matches.require(match_id)
        if match.status == "in_progress" and round_number == match.current_round:
            forced = await self._auto_commit_timeout(match, round_number)
            if forced:
                p1, p2 = await self.commits.committed_flags(match.id, round_number,
                                                            match.player1_address, match.player2_address)
                if p1 and p2:
                    self.events.emit(match.id, "round_plan_ready", {"roundNumber": round_number})
        return await self.status(match_id, round_number)

    async def status(self, match_id: str, round_number: int) -> RoundStatusResponse:
        """Read-only view of a round; never mutates state."""
        match = await self.matches.require(match_id)
        resolved_id = await self.commits.resolved_round_id(match.id, round_number)
        commits = await self._round_commits(match, round_number)
        p1c, p2c = "player1" in commits, "player2" in commits
        p1r = p1c and commits["player1"].is_revealed
        p2r = p2c and commits["player2"].is_revealed

        if resolved_id:
            phase = RoundPhase.RESOLVED
        elif match.status == "completed":
            phase = RoundPhase.ABANDONED
        elif p1r and p2r:
            lock = await self.lock.peek(match.id, round_number)
            phase = RoundPhase.RESOLVING if lock else RoundPhase.BOTH_REVEALED
        elif p1r or p2r:
            phase = RoundPhase.AWAITING_REVEALS
        elif p1c and p2c:
            phase = RoundPhase.BOTH_COMMITTED
        else:
            phase = RoundPhase.AWAITING_COMMITS

        return RoundStatusResponse(
            match_id=match.id,
            round_number=round_number,
            state=phase.value,
            player1_committed=p1c or bool(resolved_id),
            player2_committed=p2c or bool(resolved_id),
            player1_revealed=p1r or bool(resolved_id),
            player2_revealed=p2r or bool(resolved_id),
            resolved_round_id=resolved_id,
            deadline_at=self._deadline(match),
            surge_cards=draw_round_deck(match.id, round_number),
        )
