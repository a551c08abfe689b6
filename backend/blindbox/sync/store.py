"""Client-side session store.

Keeps the last snapshot seen from the transport, tells listeners about every
change and runs the teacher's session controls (start, end, reset). Each
control reads the freshest remote state it can, rewrites the whole snapshot
and pushes it back. None of them is safe against claims that are in flight
in other processes: a reset or end racing a claim can drop that claim.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import replace
from typing import Any, Callable, List

from .model import GameSession, SessionPhase, Snapshot, now_ms
from .transport import SubscribeFailed, Subscription, Transport

logger = logging.getLogger(__name__)

Listener = Callable[[GameSession, list], None]

# Phases each control may leave from
_START_FROM = {SessionPhase.IDLE}
_END_FROM = {SessionPhase.RUNNING}


class SessionStore:
    def __init__(self, transport: Transport, catalog_source, poll_interval: float = 3.0):
        self.transport = transport
        self.catalog_source = catalog_source
        self.poll_interval = poll_interval
        # Serializes this process's own claims and session controls
        self.lock = threading.RLock()
        self._cache_lock = threading.Lock()
        self._snapshot = Snapshot()
        self._listeners: List[Listener] = []
        self._subscription: Subscription | None = None
        self._poller: threading.Thread | None = None
        self._stop = threading.Event()
        self.loaded = False

    @property
    def snapshot(self) -> Snapshot:
        with self._cache_lock:
            return self._snapshot

    @property
    def session(self) -> GameSession:
        return self.snapshot.session

    @property
    def catalog(self) -> list:
        return self.snapshot.catalog

    # ---- change notification ----

    def add_listener(self, listener: Listener) -> Subscription:
        with self._cache_lock:
            self._listeners.append(listener)
        return Subscription(lambda: self._remove_listener(listener))

    def _remove_listener(self, listener: Listener) -> None:
        with self._cache_lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def accept(self, snapshot: Any) -> Snapshot:
        """Replace the cached snapshot and notify listeners.

        Accepts a ``Snapshot`` or its wire dict; the shape is normalized either
        way so a missing ``assignments`` field reads as no claims.
        """
        if isinstance(snapshot, Snapshot):
            snapshot = snapshot.to_dict()
        normalized = Snapshot.from_dict(snapshot)
        with self._cache_lock:
            self._snapshot = normalized
            self.loaded = True
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(normalized.session, normalized.catalog)
            except Exception:
                logger.exception("[notify] listener failed")
        return normalized

    # ---- remote state ----

    def refresh(self) -> bool:
        snapshot = self.transport.pull()
        if snapshot is None:
            return False
        self.accept(snapshot)
        return True

    def current(self) -> Snapshot:
        """Fresh remote snapshot, falling back to the cached one."""
        snapshot = self.transport.pull()
        return snapshot if snapshot is not None else self.snapshot

    def attach(self) -> "SessionStore":
        """Start following remote changes: subscribe when the transport can
        push, otherwise poll every ``poll_interval`` seconds.

        A push connection that cannot be opened falls back to polling.
        """
        if self._subscription is not None or self._poller is not None:
            return self
        self.refresh()
        if self.transport.supports_subscribe:
            try:
                self._subscription = self.transport.subscribe(self.accept)
                return self
            except SubscribeFailed as exc:
                logger.warning(f"[attach] subscribe failed, polling every {self.poll_interval}s: {exc}")
        self._stop.clear()
        self._poller = threading.Thread(target=self._poll_loop, name='blindbox-poller', daemon=True)
        self._poller.start()
        return self

    def detach(self) -> None:
        subscription, self._subscription = self._subscription, None
        if subscription is not None:
            subscription()
        poller, self._poller = self._poller, None
        if poller is not None:
            self._stop.set()
            if poller is not threading.current_thread():
                poller.join(timeout=self.poll_interval + 1)

    def _poll_loop(self) -> None:
        while not self._stop.wait(self.poll_interval):
            self.refresh()

    def __enter__(self):
        return self.attach()

    def __exit__(self, exc_type, exc, tb):
        self.detach()

    # ---- session controls ----

    def _commit(self, snapshot: Snapshot, action: str) -> bool:
        ok = self.transport.push(snapshot)
        logger.info(f"[{action}] phase={snapshot.session.phase.value} entries={len(snapshot.catalog)} ok={ok}")
        if ok:
            self.accept(snapshot)
        return ok

    def start_session(self) -> bool:
        """Idle -> Running with a freshly fetched catalog and no claims."""
        with self.lock:
            base = self.current()
            if base.session.phase not in _START_FROM:
                logger.warning(f"[start] refused from phase={base.session.phase.value}")
                return False
            catalog = self.catalog_source.fetch()
            if not catalog:
                logger.warning("[start] catalog is empty")
            session = GameSession(phase=SessionPhase.RUNNING, started_at=now_ms())
            return self._commit(Snapshot(session=session, catalog=catalog, updated_at=now_ms()), 'start')

    def end_session(self) -> bool:
        """Running -> Ended; claims made so far are kept."""
        with self.lock:
            base = self.current()
            if base.session.phase not in _END_FROM:
                logger.warning(f"[end] refused from phase={base.session.phase.value}")
                return False
            session = replace(base.session, phase=SessionPhase.ENDED, ended_at=now_ms(),
                              assignments=dict(base.session.assignments))
            return self._commit(base.with_session(session), 'end')

    def reset_session(self, refetch_catalog: bool = False) -> bool:
        """Any phase -> Idle, dropping claims and timestamps.

        The catalog is discarded unless ``refetch_catalog`` asks for a new one.
        """
        with self.lock:
            catalog = self.catalog_source.fetch() if refetch_catalog else []
            return self._commit(Snapshot(session=GameSession(), catalog=catalog, updated_at=now_ms()), 'reset')

    def initialize(self) -> bool:
        return self.reset_session(refetch_catalog=True)
