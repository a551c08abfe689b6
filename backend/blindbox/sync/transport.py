"""Transports move whole snapshots between a client and the shared backend.

Three variants implement the same interface:

- ``SocketIOTransport``: push-subscribe. Reads and writes over the backend's
  REST endpoints and receives every accepted write through a Socket.IO room.
- ``HttpPollTransport``: poll. Same REST endpoints, no subscription; callers
  refresh on a fixed interval.
- ``LocalBroadcastTransport``: same-device only. A JSON file under a local
  storage directory, shared by every process pointed at that directory.

None of them offers compare-and-set. Concurrent pushes interleave and the
last write wins. Failures never escape: ``pull`` answers ``None``, ``push``
answers ``False`` and ``clear`` only logs.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from abc import ABC, abstractmethod
from contextlib import nullcontext
from pathlib import Path
from typing import Any, Callable

import requests

from .model import Snapshot

logger = logging.getLogger(__name__)

SnapshotCallback = Callable[[Snapshot], None]

NAMESPACE = '/ws'


def config_value(config: Any, key: str, default: Any = None) -> Any:
    """Read ``key`` from a Flask config mapping or a ``Config``-style object."""
    if isinstance(config, dict):
        return config.get(key, default)
    return getattr(config, key, default)


class SubscribeFailed(ConnectionError):
    """The transport could not open its push connection."""


class Subscription:
    """Deregistration handle returned by ``Transport.subscribe``.

    Calling it more than once is harmless.
    """

    def __init__(self, release: Callable[[], None]):
        self._release = release
        self._released = False
        self._lock = threading.Lock()

    @property
    def active(self) -> bool:
        return not self._released

    def __call__(self) -> None:
        with self._lock:
            if self._released:
                return
            self._released = True
        self._release()


class Transport(ABC):
    supports_subscribe = False

    @abstractmethod
    def pull(self) -> Snapshot | None:
        """Current remote snapshot, or ``None`` when absent or unreachable."""

    @abstractmethod
    def push(self, snapshot: Snapshot) -> bool:
        """Replace the remote snapshot wholesale."""

    @abstractmethod
    def clear(self) -> None:
        """Best-effort removal of the remote snapshot."""

    def subscribe(self, callback: SnapshotCallback) -> Subscription:
        raise NotImplementedError(f"{type(self).__name__} does not push updates")

    def close(self) -> None:
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


class HttpPollTransport(Transport):
    """Key/value snapshot store reached over HTTP."""

    def __init__(self, base_url: str, room_id: str, timeout: float = 5.0, session=None):
        self.base_url = base_url.rstrip('/')
        self.room_id = room_id
        self.timeout = timeout
        self.url = f"{self.base_url}/api/rooms/{room_id}/snapshot"
        self._http = session or requests.Session()

    def pull(self) -> Snapshot | None:
        try:
            res = self._http.get(self.url, timeout=self.timeout)
        except requests.RequestException as exc:
            logger.warning(f"[pull] room={self.room_id} unreachable: {exc}")
            return None
        if res.status_code == 404:
            return None
        if not res.ok:
            logger.warning(f"[pull] room={self.room_id} status={res.status_code}")
            return None
        try:
            data = res.json()
        except ValueError as exc:
            logger.warning(f"[pull] room={self.room_id} bad payload: {exc}")
            return None
        return Snapshot.from_dict(data)

    def push(self, snapshot: Snapshot) -> bool:
        try:
            res = self._http.put(self.url, json=snapshot.to_dict(), timeout=self.timeout)
        except requests.RequestException as exc:
            logger.warning(f"[push] room={self.room_id} unreachable: {exc}")
            return False
        logger.info(f"[push] room={self.room_id} status={res.status_code}")
        return bool(res.ok)

    def clear(self) -> None:
        try:
            res = self._http.delete(self.url, timeout=self.timeout)
        except requests.RequestException as exc:
            logger.warning(f"[clear] room={self.room_id} unreachable: {exc}")
            return
        if not res.ok:
            logger.warning(f"[clear] room={self.room_id} status={res.status_code}")

    def close(self) -> None:
        self._http.close()


def _default_socket_client():
    import socketio
    return socketio.Client(reconnection=True)


class SocketIOTransport(HttpPollTransport):
    """Push-subscribe variant.

    One Socket.IO connection is shared by every subscriber of this transport.
    It is opened by the first ``subscribe`` and closed when the last
    subscription is released or the transport is closed.
    """

    supports_subscribe = True

    def __init__(self, base_url: str, room_id: str, timeout: float = 5.0, session=None,
                 client_factory: Callable[[], Any] | None = None):
        super().__init__(base_url, room_id, timeout=timeout, session=session)
        self._client_factory = client_factory or _default_socket_client
        self._client = None
        self._callbacks: list[SnapshotCallback] = []
        self._lock = threading.Lock()

    def subscribe(self, callback: SnapshotCallback) -> Subscription:
        """Register ``callback`` for every snapshot broadcast to the room.

        Raises ``SubscribeFailed`` when the first connection cannot be made;
        the callback is not registered in that case.
        """
        with self._lock:
            if self._client is None:
                self._client = self._connect()
            self._callbacks.append(callback)
        return Subscription(lambda: self._release(callback))

    def _connect(self):
        client = self._client_factory()

        def on_connect():
            client.emit('subscribe', {'room_id': self.room_id}, namespace=NAMESPACE)

        # Re-subscribing on every connect also covers automatic reconnects
        client.on('connect', on_connect, namespace=NAMESPACE)
        client.on('snapshot', self._on_snapshot, namespace=NAMESPACE)
        client.on('snapshot_cleared', self._on_cleared, namespace=NAMESPACE)
        try:
            client.connect(self.base_url, namespaces=[NAMESPACE], wait_timeout=self.timeout)
        except Exception as exc:
            logger.warning(f"[subscribe] room={self.room_id} connect failed: {exc}")
            raise SubscribeFailed(f"cannot reach {self.base_url}: {exc}") from exc
        return client

    def _on_snapshot(self, data):
        if not isinstance(data, dict) or data.get('room_id') != self.room_id:
            return
        self._deliver(Snapshot.from_dict(data.get('snapshot')))

    def _on_cleared(self, data):
        if isinstance(data, dict) and data.get('room_id') == self.room_id:
            self._deliver(Snapshot())

    def _deliver(self, snapshot: Snapshot) -> None:
        with self._lock:
            callbacks = list(self._callbacks)
        for callback in callbacks:
            try:
                callback(snapshot)
            except Exception:
                logger.exception(f"[deliver] room={self.room_id} subscriber failed")

    def _release(self, callback: SnapshotCallback) -> None:
        with self._lock:
            if callback in self._callbacks:
                self._callbacks.remove(callback)
            if self._callbacks or self._client is None:
                return
            client, self._client = self._client, None
        self._disconnect(client)

    def _disconnect(self, client) -> None:
        try:
            if client.connected:
                client.emit('unsubscribe', {'room_id': self.room_id}, namespace=NAMESPACE)
            client.disconnect()
        except Exception as exc:
            logger.warning(f"[unsubscribe] room={self.room_id} disconnect failed: {exc}")

    def close(self) -> None:
        with self._lock:
            self._callbacks.clear()
            client, self._client = self._client, None
        if client is not None:
            self._disconnect(client)
        super().close()


def _file_signature(path: Path):
    """Identity of the file's current contents, or ``None`` when it is absent.

    Every push replaces the file, so the inode changes even when two writes
    land within the same mtime tick.
    """
    try:
        st = path.stat()
    except OSError:
        return None
    return (st.st_ino, st.st_mtime_ns, st.st_size)


def _read_snapshot(path: Path, room_id: str) -> Snapshot | None:
    try:
        text = path.read_text(encoding='utf-8')
    except FileNotFoundError:
        return None
    except OSError as exc:
        logger.warning(f"[pull] local room={room_id} unreadable: {exc}")
        return None
    try:
        return Snapshot.from_dict(json.loads(text))
    except ValueError as exc:
        logger.warning(f"[pull] local room={room_id} bad payload: {exc}")
        return None


class _LocalChannel:
    """Subscribers of one snapshot file in this process.

    Pushes made here are delivered straight away. A watcher thread checks the
    file every ``interval`` seconds and delivers writes made by other
    processes sharing the storage directory. ``last`` is the snapshot most
    recently delivered, so nothing goes out twice.
    """

    def __init__(self, path: Path, room_id: str, interval: float):
        self.path = path
        self.room_id = room_id
        self.interval = interval
        self.lock = threading.Lock()
        self.callbacks: list[SnapshotCallback] = []
        self.last: Snapshot | None = None
        self.signature = None
        self._stop: threading.Event | None = None
        self._watcher: threading.Thread | None = None

    def add(self, callback: SnapshotCallback) -> None:
        with self.lock:
            self.callbacks.append(callback)
            if self._watcher is not None:
                return
            self.signature = _file_signature(self.path)
            self.last = _read_snapshot(self.path, self.room_id) if self.signature else Snapshot()
            self._stop = threading.Event()
            self._watcher = threading.Thread(target=self._watch, args=(self._stop,),
                                             name=f"blindbox-local-{self.room_id}", daemon=True)
            self._watcher.start()

    def remove(self, callback: SnapshotCallback) -> bool:
        """Drop ``callback``; answers whether the channel is now unused."""
        with self.lock:
            if callback in self.callbacks:
                self.callbacks.remove(callback)
            if self.callbacks:
                return False
            watcher, self._watcher = self._watcher, None
            if self._stop is not None:
                self._stop.set()
        if watcher is not None and watcher is not threading.current_thread():
            watcher.join(timeout=self.interval + 1)
        return True

    def seen(self, snapshot: Snapshot) -> None:
        """Record a write made by this process. Caller holds ``lock``."""
        self.last = snapshot
        self.signature = _file_signature(self.path)

    def deliver(self, snapshot: Snapshot) -> None:
        with self.lock:
            callbacks = list(self.callbacks)
        for callback in callbacks:
            try:
                callback(snapshot)
            except Exception:
                logger.exception(f"[deliver] local room={self.room_id} subscriber failed")

    def _watch(self, stop: threading.Event) -> None:
        while not stop.wait(self.interval):
            with self.lock:
                signature = _file_signature(self.path)
                if signature == self.signature:
                    continue
                self.signature = signature
                snapshot = _read_snapshot(self.path, self.room_id) if signature else Snapshot()
                if snapshot is None or snapshot == self.last:
                    continue
                self.last = snapshot
            logger.info(f"[watch] local room={self.room_id} changed on disk")
            self.deliver(snapshot)


class LocalBroadcastTransport(Transport):
    """Same-device variant backed by a JSON file.

    Every process pointed at the same storage directory shares the room.
    Subscribers in the writing process are notified right after a push or
    clear; subscribers in other processes are notified by their watcher
    within ``watch_interval`` seconds.
    """

    supports_subscribe = True

    _channels: dict[str, _LocalChannel] = {}
    _channels_lock = threading.Lock()

    def __init__(self, storage_dir: str | os.PathLike, room_id: str, watch_interval: float = 0.5):
        self.room_id = room_id
        self.path = Path(storage_dir) / f"{room_id}.json"
        self.watch_interval = watch_interval
        self._key = str(self.path.resolve())

    def _channel(self, create: bool = False) -> _LocalChannel | None:
        with self._channels_lock:
            channel = self._channels.get(self._key)
            if channel is None and create:
                channel = self._channels[self._key] = _LocalChannel(self.path, self.room_id, self.watch_interval)
            return channel

    def pull(self) -> Snapshot | None:
        return _read_snapshot(self.path, self.room_id)

    def push(self, snapshot: Snapshot) -> bool:
        delivered = Snapshot.from_dict(snapshot.to_dict())
        channel = self._channel()
        # One temp file per writer so concurrent pushes never share it
        tmp = self.path.with_name(f"{self.path.name}.{os.getpid()}.{threading.get_ident()}.tmp")
        with channel.lock if channel is not None else nullcontext():
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                tmp.write_text(json.dumps(snapshot.to_dict(), ensure_ascii=False), encoding='utf-8')
                os.replace(tmp, self.path)
            except OSError as exc:
                logger.warning(f"[push] local room={self.room_id} failed: {exc}")
                return False
            if channel is not None:
                channel.seen(delivered)
        if channel is not None:
            channel.deliver(delivered)
        return True

    def clear(self) -> None:
        channel = self._channel()
        with channel.lock if channel is not None else nullcontext():
            try:
                self.path.unlink(missing_ok=True)
            except OSError as exc:
                logger.warning(f"[clear] local room={self.room_id} failed: {exc}")
                return
            if channel is not None:
                channel.seen(Snapshot())
        if channel is not None:
            channel.deliver(Snapshot())

    def subscribe(self, callback: SnapshotCallback) -> Subscription:
        self._channel(create=True).add(callback)
        return Subscription(lambda: self._release(callback))

    def _release(self, callback: SnapshotCallback) -> None:
        channel = self._channel()
        if channel is not None and channel.remove(callback):
            with self._channels_lock:
                if self._channels.get(self._key) is channel and not channel.callbacks:
                    self._channels.pop(self._key, None)


def build_transport(config) -> Transport:
    """Build the transport variant named by ``TRANSPORT`` in ``config``."""
    variant = str(config_value(config, 'TRANSPORT', 'socketio')).lower()
    room_id = config_value(config, 'ROOM_ID', 'defaultRoom')
    if variant == 'local':
        return LocalBroadcastTransport(config_value(config, 'LOCAL_STORAGE_DIR', '.blindbox'), room_id,
                                       watch_interval=float(config_value(config, 'LOCAL_WATCH_INTERVAL_SEC', 0.5)))
    base_url = config_value(config, 'BACKEND_URL', 'http://localhost:5000')
    timeout = float(config_value(config, 'REQUEST_TIMEOUT_SEC', 5))
    if variant == 'http':
        return HttpPollTransport(base_url, room_id, timeout=timeout)
    if variant == 'socketio':
        return SocketIOTransport(base_url, room_id, timeout=timeout)
    raise ValueError(f"Unknown transport variant: {variant}")
