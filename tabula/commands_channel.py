from __future__ import annotations

import logging
import queue
import threading

from .errors import CommandChannelError

logger = logging.getLogger(__name__)

REFRESH_ALL = "refresh_all"
CLOSE_TAB_PREFIX = "close_tab:"


def close_tab_command(tab_id: int) -> str:
    return f"{CLOSE_TAB_PREFIX}{tab_id}"


class Subscription:
    """One listener's bounded inbox; use as a context manager to unsubscribe."""

    def __init__(self, channel: CommandChannel, capacity: int) -> None:
        self._channel = channel
        self._queue: queue.Queue[str] = queue.Queue(maxsize=max(1, capacity))

    def get(self, timeout: float | None = None) -> str | None:
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def offer(self, command: str) -> bool:
        """Enqueue without blocking; returns False when an old command was dropped."""
        dropped = False
        while True:
            try:
                self._queue.put_nowait(command)
                return not dropped
            except queue.Full:
                try:
                    self._queue.get_nowait()
                    dropped = True
                except queue.Empty:
                    continue

    def close(self) -> None:
        self._channel.unsubscribe(self)

    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class CommandChannel:
    """Fan-out of browser commands to every connected extension listener.

    Delivery is best effort: a listener that falls behind loses its oldest
    pending commands rather than blocking the publisher.
    """

    def __init__(self, capacity: int = 16) -> None:
        self.capacity = capacity
        self._lock = threading.Lock()
        self._subscribers: list[Subscription] = []

    def subscribe(self) -> Subscription:
        subscription = Subscription(self, self.capacity)
        with self._lock:
            self._subscribers.append(subscription)
            count = len(self._subscribers)
        logger.info("command listener connected (%s active)", count)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            if subscription not in self._subscribers:
                return
            self._subscribers.remove(subscription)
            count = len(self._subscribers)
        logger.info("command listener disconnected (%s active)", count)

    def listener_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def publish(self, command: str) -> int:
        """Deliver ``command`` to all current listeners; returns how many got it."""
        with self._lock:
            targets = list(self._subscribers)
        for subscription in targets:
            if not subscription.offer(command):
                logger.warning("command listener lagging, dropped oldest command")
        logger.debug("published %s to %s listeners", command, len(targets))
        return len(targets)

    def trigger_refresh(self) -> int:
        delivered = self.publish(REFRESH_ALL)
        if not delivered:
            raise CommandChannelError("no listeners")
        return delivered
