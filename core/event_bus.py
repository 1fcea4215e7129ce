"""
Event Bus
=========

Topic based publish/subscribe dispatcher.

A host creates one bus and hands it to every plugin. Plugins bind named topics
to callables so decoupled callers can invoke them without holding a reference
to the plugin instance:

    bus = EventBus()
    bus.on("live:server:running", lambda: live.is_running)
    bus.trigger_sync("live:server:running")  # -> False
"""

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


def _topic_name(topic: Any) -> str:
    """Normalize a topic (plain string or string Enum member) to its name"""
    return topic.value if isinstance(topic, Enum) else str(topic)


@dataclass
class _Subscription:
    """A callback bound to a topic"""
    callback: Callable[..., Any]
    once: bool = False


class EventBus:
    """
    Publish/subscribe dispatcher keyed by topic name.

    Callbacks run synchronously on the triggering thread. Exceptions raised by
    a callback propagate to the caller of `trigger` / `trigger_sync`.
    """

    def __init__(self, name: str = "eventbus"):
        self.name = name
        self._subscriptions: Dict[str, List[_Subscription]] = {}
        self._lock = threading.Lock()

    def on(self, topic: str, callback: Callable[..., Any]) -> "EventBus":
        """
        Subscribe a callback to a topic.

        Args:
            topic: Topic name
            callback: Callable invoked with the trigger arguments

        Returns:
            This bus, for chaining
        """
        return self._add(topic, callback, once=False)

    def once(self, topic: str, callback: Callable[..., Any]) -> "EventBus":
        """Subscribe a callback that is removed after its first invocation"""
        return self._add(topic, callback, once=True)

    def off(
        self,
        topic: Optional[str] = None,
        callback: Optional[Callable[..., Any]] = None,
    ) -> "EventBus":
        """
        Remove subscriptions.

        Args:
            topic: Topic to clear (None = every topic)
            callback: Only remove this callback (None = every callback)

        Returns:
            This bus, for chaining
        """
        with self._lock:
            topics = [_topic_name(topic)] if topic is not None else list(self._subscriptions)
            for name in topics:
                if callback is None:
                    self._subscriptions.pop(name, None)
                    continue
                remaining = [
                    sub for sub in self._subscriptions.get(name, [])
                    if sub.callback != callback
                ]
                if remaining:
                    self._subscriptions[name] = remaining
                else:
                    self._subscriptions.pop(name, None)
        return self

    def trigger(self, topic: str, *args: Any, **kwargs: Any) -> None:
        """Invoke every subscriber of a topic, discarding results"""
        self._dispatch(topic, args, kwargs)

    def trigger_sync(self, topic: str, *args: Any, **kwargs: Any) -> Any:
        """
        Invoke every subscriber of a topic and collect results.

        Returns:
            None without subscribers, the result itself with exactly one
            subscriber, otherwise a list of results in subscription order
        """
        results = self._dispatch(topic, args, kwargs)
        if not results:
            return None
        if len(results) == 1:
            return results[0]
        return results

    def has_listeners(self, topic: str) -> bool:
        """Check whether a topic has at least one subscriber"""
        with self._lock:
            return bool(self._subscriptions.get(_topic_name(topic)))

    @property
    def topics(self) -> List[str]:
        """Names of every topic with subscribers"""
        with self._lock:
            return list(self._subscriptions)

    def _add(self, topic: str, callback: Callable[..., Any], once: bool) -> "EventBus":
        if not callable(callback):
            raise TypeError(f"Callback for topic '{topic}' is not callable")

        with self._lock:
            self._subscriptions.setdefault(_topic_name(topic), []).append(
                _Subscription(callback=callback, once=once)
            )
        return self

    def _dispatch(self, topic: str, args: tuple, kwargs: dict) -> List[Any]:
        name = _topic_name(topic)
        with self._lock:
            subscriptions = list(self._subscriptions.get(name, []))
            if any(sub.once for sub in subscriptions):
                remaining = [sub for sub in self._subscriptions[name] if not sub.once]
                if remaining:
                    self._subscriptions[name] = remaining
                else:
                    del self._subscriptions[name]

        if not subscriptions:
            logger.debug(f"{self.name}: no subscribers for '{name}'")

        return [sub.callback(*args, **kwargs) for sub in subscriptions]
