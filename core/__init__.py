"""
Core module for the live server.
Contains configuration, shared types and the collaborators the controller drives.
"""

# Configuration
from .config import (
    LIVE_SERVER_CONFIG,
    LiveServerConfig,
    BUILTIN_OPTIONS,
    LOG_FORMAT,
    LOG_LEVEL,
)

# Types
from .constants import (
    EventTopic,
    ServerEvent,
    LogLevel,
    Scheme,
)

# Event bus and plugin host
from .event_bus import EventBus
from .plugins import PluginEvent, PluginManager

# Collaborators
from .browser import BrowserLauncher
from .static_server import (
    StaticFileServer,
    DevServerHandle,
    LaunchSettings,
    BoundAddress,
    Connection,
    create_app,
)

__all__ = [
    # Configuration
    'LIVE_SERVER_CONFIG',
    'LiveServerConfig',
    'BUILTIN_OPTIONS',
    'LOG_FORMAT',
    'LOG_LEVEL',

    # Types
    'EventTopic',
    'ServerEvent',
    'LogLevel',
    'Scheme',

    # Event bus and plugin host
    'EventBus',
    'PluginEvent',
    'PluginManager',

    # Collaborators
    'BrowserLauncher',
    'StaticFileServer',
    'DevServerHandle',
    'LaunchSettings',
    'BoundAddress',
    'Connection',
    'create_app',
]
