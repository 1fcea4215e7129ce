"""
Minimal plugin host.

Plugins are objects exposing optional `on_plugin_load(event)` and
`on_plugin_unload(event)` hooks. The manager hands each plugin the shared
event bus and its own options through a `PluginEvent`.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .event_bus import EventBus

logger = logging.getLogger(__name__)


@dataclass
class PluginEvent:
    """Payload passed to plugin lifecycle hooks"""
    eventbus: EventBus
    plugin_name: str
    plugin_options: Dict[str, Any] = field(default_factory=dict)


@dataclass
class PluginEntry:
    """A registered plugin"""
    name: str
    instance: Any
    options: Dict[str, Any] = field(default_factory=dict)


class PluginManager:
    """
    Registers plugins against a shared event bus.

    Example:
        bus = EventBus()
        manager = PluginManager(eventbus=bus)
        manager.add("live-server", LiveServer(), options={"root": "./site"})
        bus.trigger_sync(EventTopic.START)
    """

    def __init__(self, eventbus: Optional[EventBus] = None):
        self.eventbus = eventbus if eventbus is not None else EventBus()
        self._plugins: Dict[str, PluginEntry] = {}

    def add(
        self,
        name: str,
        instance: Any,
        options: Optional[Dict[str, Any]] = None,
    ) -> PluginEntry:
        """
        Register a plugin and invoke its load hook.

        Raises:
            ValueError: If a plugin with this name is already registered
        """
        if name in self._plugins:
            raise ValueError(f"Plugin already registered: {name}")

        entry = PluginEntry(name=name, instance=instance, options=dict(options or {}))
        self._plugins[name] = entry

        hook = getattr(instance, "on_plugin_load", None)
        if callable(hook):
            hook(self._event_for(entry))

        logger.info(f"Plugin loaded: {name}")
        return entry

    def remove(self, name: str) -> bool:
        """
        Unregister a plugin and invoke its unload hook.

        Returns:
            True if the plugin was registered
        """
        entry = self._plugins.pop(name, None)
        if entry is None:
            return False

        hook = getattr(entry.instance, "on_plugin_unload", None)
        if callable(hook):
            hook(self._event_for(entry))

        logger.info(f"Plugin unloaded: {name}")
        return True

    def remove_all(self) -> None:
        """Unregister every plugin, most recently added first"""
        for name in reversed(list(self._plugins)):
            self.remove(name)

    def get(self, name: str) -> Optional[Any]:
        """Get a registered plugin instance by name"""
        entry = self._plugins.get(name)
        return entry.instance if entry else None

    @property
    def names(self) -> List[str]:
        return list(self._plugins)

    def _event_for(self, entry: PluginEntry) -> PluginEvent:
        return PluginEvent(
            eventbus=self.eventbus,
            plugin_name=entry.name,
            plugin_options=dict(entry.options),
        )
