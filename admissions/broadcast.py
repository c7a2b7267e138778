from __future__ import annotations

import logging
import threading
import uuid
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Set

from pydantic import TypeAdapter

from .schemas import BroadcastEvent
from .settings import settings


logger = logging.getLogger(__name__)

Listener = Callable[[BroadcastEvent], Any]


class BroadcastHub:
    """Same-device fan-out between execution contexts (tabs, views).

    Each context opens its own channel; a publish reaches every *other* channel
    subscribed to the key, synchronously, carrying the whole new value.
    `topics` optionally pins a payload type per storage key.
    """

    def __init__(self, topics: Optional[Dict[str, Any]] = None) -> None:
        self._channels: Dict[str, "BroadcastChannel"] = {}
        self._adapters = {key: TypeAdapter(tp) for key, tp in (topics or {}).items()}
        self._lock = threading.RLock()

    def open(self, tab_id: Optional[str] = None) -> "BroadcastChannel":
        channel = BroadcastChannel(self, tab_id or uuid.uuid4().hex)
        with self._lock:
            self._channels[channel.tab_id] = channel
        return channel

    def _close(self, channel: "BroadcastChannel") -> None:
        with self._lock:
            self._channels.pop(channel.tab_id, None)

    def _deliver(self, event: BroadcastEvent) -> int:
        adapter = self._adapters.get(event.storage_key)
        if adapter is not None:
            adapter.validate_python(event.new_value)
        with self._lock:
            targets = [c for tid, c in self._channels.items() if tid != event.origin_tab_id]
        delivered = 0
        for channel in targets:
            delivered += channel._receive(event)
        return delivered


class BroadcastChannel:
    def __init__(self, hub: BroadcastHub, tab_id: str) -> None:
        self.hub = hub
        self.tab_id = tab_id
        self._listeners: List[tuple] = []

    def publish(self, key: str, value: Any) -> int:
        """Notify the other contexts; returns how many listeners were called."""
        event = BroadcastEvent(storage_key=key, new_value=value, origin_tab_id=self.tab_id)
        return self.hub._deliver(event)

    def subscribe(self, callback: Listener, keys: Optional[Iterable[str]] = None) -> Callable[[], None]:
        entry = (callback, set(keys) if keys is not None else None)
        self._listeners.append(entry)

        def unsubscribe() -> None:
            if entry in self._listeners:
                self._listeners.remove(entry)

        return unsubscribe

    def _receive(self, event: BroadcastEvent) -> int:
        called = 0
        for callback, keys in list(self._listeners):
            if keys is not None and event.storage_key not in keys:
                continue
            try:
                callback(event)
                called += 1
            except Exception:
                logger.exception("broadcast listener failed for %s", event.storage_key)
        return called

    def close(self) -> None:
        self._listeners.clear()
        self.hub._close(self)


class RemotePoller:
    """Re-fetches the remote store on an interval for cross-device changes.

    Polling is suspended while an edit is open (`editing()` / `pause()`), so a
    remote read never lands on top of an in-progress edit. A poll already in
    flight finishes; `apply` is expected to keep locally newer items.
    """

    def __init__(
        self,
        fetch: Callable[[], Any],
        apply: Callable[[Any], Any],
        interval_s: Optional[float] = None,
    ) -> None:
        self.fetch = fetch
        self.apply = apply
        self.interval_s = float(interval_s if interval_s is not None else settings.sync.get("poll_interval_s", 10))
        self._stop = threading.Event()
        self._editors: Set[int] = set()
        self._editor_seq = 0
        self._lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None

    @property
    def paused(self) -> bool:
        with self._lock:
            return bool(self._editors)

    def pause(self) -> int:
        with self._lock:
            self._editor_seq += 1
            self._editors.add(self._editor_seq)
            return self._editor_seq

    def resume(self, token: int) -> None:
        with self._lock:
            self._editors.discard(token)

    @contextmanager
    def editing(self) -> Iterator[None]:
        token = self.pause()
        try:
            yield
        finally:
            self.resume(token)

    def poll_once(self) -> bool:
        """Run one fetch/apply cycle unless paused. Failures are logged, not raised."""
        if self.paused:
            return False
        try:
            data = self.fetch()
        except Exception:
            logger.warning("remote poll failed", exc_info=True)
            return False
        try:
            self.apply(data)
        except Exception:
            logger.exception("applying remote poll results failed")
            return False
        return True

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="remote-poller", daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread:
            self._thread.join(timeout)
            self._thread = None

    def _run(self) -> None:
        while not self._stop.wait(self.interval_s):
            self.poll_once()
