"""Claim arbitration: read, verify, write.

``ClaimArbiter.claim`` pulls the remote snapshot, checks the one-box-per-name
and one-name-per-box rules against it and pushes the extended snapshot back.
This is optimistic concurrency without a lock. Two clients that both pull
before either pushes can both pass validation; the backend keeps whichever
write lands last and the other claim is lost even though its caller was told
it succeeded. Nothing re-reads after the write and nothing retries.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Iterable, Optional

from .model import GameSession, SessionPhase, Snapshot

logger = logging.getLogger(__name__)


class ClaimFailure(Enum):
    NOT_RUNNING = "NotRunning"
    ALREADY_TAKEN = "AlreadyTaken"
    ALREADY_CLAIMED = "AlreadyClaimed"
    UNKNOWN_ENTRY = "UnknownEntry"
    INVALID_CLAIMANT = "InvalidClaimant"
    TRANSPORT_UNAVAILABLE = "TransportUnavailable"


@dataclass(frozen=True)
class ClaimResult:
    ok: bool
    reason: Optional[ClaimFailure] = None
    snapshot: Optional[Snapshot] = None

    def __bool__(self) -> bool:
        return self.ok


def validate_claim(session: GameSession, entry_ids: Iterable[str], entry_id: str,
                   claimant_name: str) -> Optional[ClaimFailure]:
    """First rule the claim breaks, or ``None`` when it may proceed."""
    if session.phase is not SessionPhase.RUNNING:
        return ClaimFailure.NOT_RUNNING
    if entry_id in session.assignments:
        return ClaimFailure.ALREADY_TAKEN
    if claimant_name in session.assignments.values():
        return ClaimFailure.ALREADY_CLAIMED
    if entry_id not in set(entry_ids):
        return ClaimFailure.UNKNOWN_ENTRY
    return None


class ClaimArbiter:
    def __init__(self, store):
        self.store = store
        self.transport = store.transport

    def claim(self, entry_id: str, claimant_name: str, current: Optional[Snapshot] = None) -> ClaimResult:
        """Try to give ``entry_id`` to ``claimant_name``.

        ``current`` is the caller's latest snapshot; it is only used when the
        pull fails, ahead of the store's cache.
        """
        # Blank names are refused; any other name is stored exactly as given
        if not (claimant_name or "").strip():
            return ClaimResult(False, ClaimFailure.INVALID_CLAIMANT)
        with self.store.lock:
            base = self.transport.pull()
            if base is None:
                logger.warning(f"[claim] pull failed, using local copy entry={entry_id}")
                base = current if current is not None else self.store.snapshot

            failure = validate_claim(base.session, base.entry_ids(), entry_id, claimant_name)
            if failure is not None:
                logger.info(f"[claim-reject] entry={entry_id} claimant={claimant_name!r} reason={failure.value}")
                return ClaimResult(False, failure)

            assignments = dict(base.session.assignments)
            assignments[entry_id] = claimant_name
            updated = base.with_session(replace(base.session, assignments=assignments))

            if not self.transport.push(updated):
                logger.warning(f"[claim] push failed entry={entry_id} claimant={claimant_name!r}")
                return ClaimResult(False, ClaimFailure.TRANSPORT_UNAVAILABLE)

            logger.info(f"[claim] entry={entry_id} claimant={claimant_name!r} total={len(assignments)}")
            return ClaimResult(True, snapshot=self.store.accept(updated))
