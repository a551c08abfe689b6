"""Shared session state and claim arbitration.

Clients never talk to each other. Every client keeps a ``SessionStore``
copy of the remote snapshot, fed by a ``Transport``, and claims boxes
through a ``ClaimArbiter``.
"""

from .model import CatalogEntry, GameSession, SessionPhase, Snapshot
from .transport import (
    HttpPollTransport,
    LocalBroadcastTransport,
    SocketIOTransport,
    SubscribeFailed,
    Subscription,
    Transport,
    build_transport,
)
from .store import SessionStore
from .arbiter import ClaimArbiter, ClaimFailure, ClaimResult

__all__ = [
    "CatalogEntry",
    "GameSession",
    "SessionPhase",
    "Snapshot",
    "Transport",
    "HttpPollTransport",
    "SocketIOTransport",
    "LocalBroadcastTransport",
    "SubscribeFailed",
    "Subscription",
    "build_transport",
    "SessionStore",
    "ClaimArbiter",
    "ClaimFailure",
    "ClaimResult",
]
