"""Process-wide service instances shared by the routers."""

from typing import Optional

from fastapi import Depends

from veilbrawl.config import settings
from veilbrawl.services.anchor import build_anchor
from veilbrawl.services.events import EventBus
from veilbrawl.services.proof_oracle import build_proof_oracle
from veilbrawl.services.record_store import InMemoryRecordStore
from veilbrawl.services.round_protocol import RoundProtocol

_protocol: Optional[RoundProtocol] = None


def get_protocol() -> RoundProtocol:
    """Return the shared RoundProtocol, creating it on first use."""
    global _protocol
    if _protocol is None:
        _protocol = RoundProtocol(
            store=InMemoryRecordStore(),
            oracle=build_proof_oracle(settings),
            settings=settings,
            anchor=build_anchor(settings),
            events=EventBus(settings.event_queue_size),
        )
    return _protocol


def get_events(protocol: RoundProtocol = Depends(get_protocol)) -> EventBus:
    return protocol.events
