"""
Constants shared by the live server controller, its collaborators and the CLI.
"""

from enum import Enum

from .config import TOPIC_PREFIX


class EventTopic(str, Enum):
    """Event bus topics bound by the live server controller"""
    OPTIONS_GET = f"{TOPIC_PREFIX}:options:get"
    RUNNING = f"{TOPIC_PREFIX}:running"
    SERVER_GET = f"{TOPIC_PREFIX}:server:get"
    SHUTDOWN = f"{TOPIC_PREFIX}:shutdown"
    START = f"{TOPIC_PREFIX}:start"
    OPEN = f"{TOPIC_PREFIX}:open"


class ServerEvent(str, Enum):
    """Events emitted by a running dev server handle"""
    CONNECTION = "connection"
    LISTENING = "listening"


class LogLevel(int, Enum):
    """Verbosity accepted through the `logLevel` option"""
    ERRORS = 0
    SOME = 1
    LOTS = 2

    @property
    def uvicorn_level(self) -> str:
        """uvicorn log level name for this verbosity"""
        return {
            LogLevel.ERRORS: "error",
            LogLevel.SOME: "info",
            LogLevel.LOTS: "debug",
        }[self]


class Scheme(str, Enum):
    """URL schemes used when building browser URLs"""
    HTTP = "http"
    HTTPS = "https"


# Wildcard bind addresses and the loopback address advertised instead
WILDCARD_HOSTS = {
    "0.0.0.0": "127.0.0.1",
    "::": "::1",
}
