"""Tagged round-plan payload stored as a commit's encrypted plan.

Wire form: "plan.v1:" + base64url(JSON) where the JSON object is
{"move", "movePlan" (10 moves), "surgeCardId" (card id or null)}.
Anything else is rejected.
"""

import base64
import binascii
import json
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from veilbrawl.constants import Move, PLAN_LENGTH, POWER_SURGE_CARD_IDS

PLAN_TAG = "plan.v1:"


class PlanDecodeError(ValueError):
    """Raised when an encrypted plan payload has an unknown shape."""


class RoundPlan(BaseModel):
    """A player's hidden plan for one round."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True, frozen=True)

    move: Move
    move_plan: List[Move] = Field(alias="movePlan", min_length=PLAN_LENGTH, max_length=PLAN_LENGTH)
    surge_card_id: Optional[str] = Field(default=None, alias="surgeCardId")

    @field_validator("surge_card_id")
    @classmethod
    def _known_surge(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and value not in POWER_SURGE_CARD_IDS:
            raise ValueError(f"unknown surge card {value!r}")
        return value

    def encode(self) -> str:
        body = json.dumps(self.model_dump(by_alias=True), separators=(",", ":")).encode("utf-8")
        return PLAN_TAG + base64.urlsafe_b64encode(body).decode("ascii")

    @classmethod
    def decode(cls, payload: str) -> "RoundPlan":
        """
        Decode a tagged payload.

        Raises:
            PlanDecodeError: On a missing tag, bad base64/JSON or an invalid plan
        """
        if not isinstance(payload, str) or not payload.startswith(PLAN_TAG):
            raise PlanDecodeError(f"Encrypted plan must start with {PLAN_TAG!r}")
        raw = payload[len(PLAN_TAG):]
        try:
            body = base64.urlsafe_b64decode(raw + "=" * (-len(raw) % 4))
            data = json.loads(body.decode("utf-8"))
        except (binascii.Error, UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise PlanDecodeError(f"Encrypted plan is not valid base64 JSON: {exc}") from None
        if not isinstance(data, dict):
            raise PlanDecodeError("Encrypted plan must be a JSON object")
        try:
            return cls.model_validate(data)
        except ValidationError as exc:
            errors = "; ".join(f"{'.'.join(str(p) for p in e['loc'])}: {e['msg']}" for e in exc.errors())
            raise PlanDecodeError(f"Invalid round plan: {errors}") from None


def stunned_plan() -> RoundPlan:
    """Forced plan used for synthesized commits."""
    return RoundPlan(move="stunned", movePlan=["stunned"] * PLAN_LENGTH, surgeCardId=None)
