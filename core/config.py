# Live Server Configuration
"""
Strongly typed defaults for the live server controller and its collaborators.
"""

from typing import Any, Dict, Literal
from dataclasses import dataclass


# Logging configuration
LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "WARNING"
LOG_FORMAT: str = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

# Prefix shared by every event bus topic the controller binds
TOPIC_PREFIX: str = "live:server"


@dataclass
class LiveServerConfig:
    """Static file server and browser launch defaults"""

    # Serving defaults (used when options omit them)
    default_root: str = "."
    default_host: str = "0.0.0.0"
    default_port: int = 8080
    listen_backlog: int = 2048

    # Shutdown
    graceful_shutdown_timeout: float = 5.0
    thread_join_timeout: float = 10.0

    # Browser launch: 0 = same window, 1 = new window, 2 = new tab
    browser_new: int = 2
    browser_autoraise: bool = True


# Global live server configuration instance
LIVE_SERVER_CONFIG = LiveServerConfig()

# Options merged underneath plugin and user options on every start.
# logLevel: 0 = errors only, 1 = some, 2 = lots
BUILTIN_OPTIONS: Dict[str, Any] = {
    "logLevel": 0,
    "open": True,
}
