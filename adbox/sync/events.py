"""AdBox — Event Fan-Out Registry.

In-process publish/subscribe keyed by tenant-scoped topics (page id for the
inbox, tenant id for ads). Delivery is best effort: no persistence, no replay,
no cross-process fan-out. Viewers that miss an event recover by polling.

A multi-instance deployment can swap ``InProcessEventRegistry`` for a broker
backed implementation of ``EventRegistry`` without touching callers.
"""

import threading
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Iterable, List, Optional

from adbox.core.logging import get_logger

logger = get_logger("sync.events")

Listener = Callable[[Any], None]
Unsubscribe = Callable[[], None]


class EventRegistry(ABC):
    """Topic-per-key fan-out interface."""

    @abstractmethod
    def subscribe(self, topic_keys: Iterable[str], listener: Listener) -> Unsubscribe:
        """Register ``listener`` under every key; returns an idempotent unsubscribe."""
        ...

    @abstractmethod
    def publish(self, topic_key: str, event: Any) -> int:
        """Deliver ``event`` to the topic's listeners; returns how many succeeded."""
        ...

    @abstractmethod
    def listener_count(self, topic_key: Optional[str] = None) -> int:
        ...


class _Subscription:
    __slots__ = ("listener", "keys", "active", "lock")

    def __init__(self, listener: Listener, keys: List[str]):
        self.listener = listener
        self.keys = keys
        self.active = True
        # Held while the listener runs so unsubscribe waits for in-flight calls
        self.lock = threading.RLock()


class InProcessEventRegistry(EventRegistry):
    """Listener map guarded by a lock; listeners run synchronously in order."""

    def __init__(self, name: str = "events"):
        self.name = name
        self._topics: Dict[str, List[_Subscription]] = {}
        self._lock = threading.Lock()

    def subscribe(self, topic_keys: Iterable[str], listener: Listener) -> Unsubscribe:
        keys = [k for k in dict.fromkeys(topic_keys) if k]
        subscription = _Subscription(listener, keys)
        with self._lock:
            for key in keys:
                self._topics.setdefault(key, []).append(subscription)
        logger.info(
            f"[{self.name}] Subscribed to {', '.join(keys) or '(none)'}. "
            f"Total listeners: {self.listener_count()}"
        )

        def unsubscribe() -> None:
            with subscription.lock:
                if not subscription.active:
                    return
                subscription.active = False
            with self._lock:
                for key in subscription.keys:
                    listeners = self._topics.get(key)
                    if not listeners:
                        continue
                    if subscription in listeners:
                        listeners.remove(subscription)
                    if not listeners:
                        del self._topics[key]
            logger.info(
                f"[{self.name}] Unsubscribed. Total listeners: {self.listener_count()}"
            )

        return unsubscribe

    def publish(self, topic_key: str, event: Any) -> int:
        with self._lock:
            subscriptions = list(self._topics.get(topic_key, ()))
        if not subscriptions:
            logger.debug(f"[{self.name}] No listeners for {topic_key}")
            return 0

        delivered = 0
        for subscription in subscriptions:
            with subscription.lock:
                if not subscription.active:
                    continue
                try:
                    subscription.listener(event)
                    delivered += 1
                except Exception as e:
                    logger.error(f"[{self.name}] Listener for {topic_key} failed: {e}")
        logger.debug(
            f"[{self.name}] Emitted to {topic_key}: {delivered}/{len(subscriptions)}"
        )
        return delivered

    def listener_count(self, topic_key: Optional[str] = None) -> int:
        with self._lock:
            if topic_key is not None:
                return len(self._topics.get(topic_key, ()))
            return sum(len(v) for v in self._topics.values())


# Process-wide registries; topic = page id / tenant id respectively
message_events: EventRegistry = InProcessEventRegistry("messages")
ad_events: EventRegistry = InProcessEventRegistry("ads")
