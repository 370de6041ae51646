"""
SIGNAL GATE — Real-time Primitives
Ordered subscriber lists with explicit unsubscribe handles, and a re-arming
refresh timer that can be cancelled before its next tick.
"""
import threading
from typing import Any, Callable, List, Optional

from signal_gate.utils.logger import get_logger

logger = get_logger("realtime")


class Subscription:
    """Handle returned by subscribe(); unsubscribe() is idempotent."""

    def __init__(self, topic: str, callback: Callable[[Any], None],
                 on_cancel: Callable[["Subscription"], None]):
        self.topic = topic
        self.callback = callback
        self._on_cancel = on_cancel
        self._active = True
        self._lock = threading.Lock()

    @property
    def active(self) -> bool:
        return self._active

    def unsubscribe(self) -> None:
        with self._lock:
            if not self._active:
                return
            self._active = False
        self._on_cancel(self)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.unsubscribe()

    def __repr__(self) -> str:
        return f"Subscription(topic={self.topic}, active={self._active})"


class SubscriberList:
    """Thread-safe observer list; delivery follows registration order."""

    def __init__(self, topic: str):
        self.topic = topic
        self._subscriptions: List[Subscription] = []
        self._lock = threading.Lock()

    def add(self, callback: Callable[[Any], None],
            on_removed: Optional[Callable[[str], None]] = None) -> Subscription:
        def _cancel(sub: Subscription) -> None:
            self.remove(sub)
            if on_removed is not None:
                on_removed(self.topic)

        sub = Subscription(self.topic, callback, _cancel)
        with self._lock:
            self._subscriptions.append(sub)
        return sub

    def remove(self, sub: Subscription) -> bool:
        with self._lock:
            if sub in self._subscriptions:
                self._subscriptions.remove(sub)
                return True
        return False

    def snapshot(self) -> List[Subscription]:
        with self._lock:
            return list(self._subscriptions)

    def clear(self) -> None:
        with self._lock:
            self._subscriptions.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._subscriptions)

    def publish(self, payload: Any) -> int:
        """Deliver payload to every active subscriber. Returns the delivery count."""
        delivered = 0
        for sub in self.snapshot():
            if not sub.active:
                continue
            try:
                sub.callback(payload)
                delivered += 1
            except Exception as e:
                logger.error("subscriber_callback_error", topic=self.topic, error=str(e))
        return delivered


class RefreshTimer:
    """
    Recurring timer built on threading.Timer.

    Each tick re-arms the next one only while the timer is running, so once
    cancel() returns no further tick is scheduled. A tick already executing
    is allowed to finish.
    """

    def __init__(self, interval_seconds: float, tick: Callable[[], Any], name: str = "refresh"):
        self.interval_seconds = interval_seconds
        self._tick = tick
        self.name = name
        self._timer: Optional[threading.Timer] = None
        self._running = False
        self._lock = threading.Lock()
        self.ticks = 0

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        with self._lock:
            if self._running:
                return
            self._running = True
            self._schedule()

    def cancel(self) -> None:
        with self._lock:
            self._running = False
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    def _schedule(self) -> None:
        timer = threading.Timer(self.interval_seconds, self._run)
        timer.name = self.name
        timer.daemon = True
        self._timer = timer
        timer.start()

    def _run(self) -> None:
        with self._lock:
            if not self._running:
                return
            self.ticks += 1
        try:
            self._tick()
        except Exception as e:
            logger.error("refresh_tick_error", timer=self.name, error=str(e))
        with self._lock:
            if self._running:
                self._schedule()
