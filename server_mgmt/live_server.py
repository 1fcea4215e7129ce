"""
Live server lifecycle management.

Wraps the static file server and browser launcher with:
- Single running server bookkeeping
- Layered option merging (built-in < plugin < user)
- Connections that never hold up shutdown
- Browser launch deferred until the server listens
- Event bus bindings for decoupled start / shutdown / status queries
"""

import copy
import logging
from collections.abc import Mapping
from enum import Enum
from typing import Any, Dict, List, Optional

from core.browser import BrowserLauncher
from core.config import BUILTIN_OPTIONS
from core.constants import WILDCARD_HOSTS, EventTopic, Scheme, ServerEvent
from core.event_bus import EventBus
from core.static_server import StaticFileServer


logger = logging.getLogger(__name__)


class ServerState(str, Enum):
    """Live server states"""
    STOPPED = "stopped"
    RUNNING = "running"


class InvalidOptionsError(TypeError):
    """Server options are not a mapping"""


def resolve_open_paths(options: Mapping) -> List[str]:
    """
    Paths to open in a browser once the server listens.

    `open` False / None disables opening. `open` True (or missing) opens
    `openPath`, defaulting to the site root. A string or list in `open` is
    used as the path(s) directly.

    Args:
        options: Effective server options

    Returns:
        Paths appended to the server base URL (empty = do not open)
    """
    value = options.get("open", True)

    if value is None or value is False:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, (list, tuple)):
        return [str(path) for path in value]

    return _as_paths(options.get("openPath", ""))


def _as_paths(value: Any) -> List[str]:
    if value is None:
        return [""]
    if isinstance(value, (list, tuple)):
        return [str(path) for path in value]
    return [str(value)]


def _unref_connection(connection: Any) -> None:
    connection.unref()


def build_base_url(handle: Any, options: Mapping) -> str:
    """
    Externally reachable base URL of a server handle.

    Wildcard bind addresses are replaced by loopback so a browser is never
    pointed at the unspecified address.
    """
    scheme = Scheme.HTTPS if options.get("https") else Scheme.HTTP
    bound = handle.address()
    host = WILDCARD_HOSTS.get(bound.address, bound.address)
    if ":" in host:
        host = f"[{host}]"
    return f"{scheme.value}://{host}:{bound.port}"


class LiveServer:
    """
    Controller for a single live development server.

    Provides:
    - start / shutdown of at most one server
    - deferred browser launch after the server listens
    - event bus topics for decoupled control
    - context manager support

    Example:
        with LiveServer(default_options={"root": "./site"}) as live:
            live.start({"port": 8080})
            # Browser opens once the server listens
        # Server automatically stopped
    """

    def __init__(
        self,
        eventbus: Optional[EventBus] = None,
        default_options: Optional[Mapping] = None,
        server_factory: Optional[StaticFileServer] = None,
        browser_launcher: Optional[BrowserLauncher] = None,
    ):
        """
        Initialize the controller.

        Args:
            eventbus: Bus to bind topics on (see `register`)
            default_options: Plugin supplied options merged under user options
            server_factory: Static file server collaborator
            browser_launcher: Browser launcher collaborator
        """
        self.default_options: Dict[str, Any] = dict(default_options or {})
        self.server_factory = server_factory or StaticFileServer()
        self.browser_launcher = browser_launcher or BrowserLauncher()

        self._options: Optional[Dict[str, Any]] = None
        self._handle: Optional[Any] = None
        self._eventbus: Optional[EventBus] = None
        self._bindings: List[tuple] = []

        if eventbus is not None:
            self.register(eventbus)

    @property
    def options(self) -> Optional[Dict[str, Any]]:
        """Effective options of the running server (None before any start)"""
        return self._options

    @property
    def server(self) -> Optional[Any]:
        """Handle of the running server, if any"""
        return self._handle

    @property
    def is_running(self) -> bool:
        return self._handle is not None

    @property
    def state(self) -> ServerState:
        return ServerState.RUNNING if self.is_running else ServerState.STOPPED

    def start(self, user_options: Optional[Mapping] = None) -> Any:
        """
        Start the live server.

        Args:
            user_options: Server options. `opnOptions` may be given to pass
                extra options to the browser launcher.

        Returns:
            The server handle (the existing one if already running)

        Raises:
            InvalidOptionsError: If user_options is not a mapping
        """
        if user_options is None:
            user_options = {}
        if not isinstance(user_options, Mapping):
            raise InvalidOptionsError(
                f"'user_options' is not a mapping: {type(user_options).__name__}"
            )

        if self._handle is not None:
            logger.warning("Live server already running, ignoring start")
            return self._handle

        options = {**BUILTIN_OPTIONS, **self.default_options, **user_options}

        # Opening the browser is handled here, never by the server itself
        launch_config = copy.deepcopy(options)
        launch_config["open"] = False

        handle = self.server_factory.launch(
            launch_config,
            observers={ServerEvent.CONNECTION: _unref_connection},
        )

        paths = resolve_open_paths(options)
        if paths:
            handle.once(
                ServerEvent.LISTENING,
                lambda: self._launch_browser(handle, options, paths),
            )

        self._handle = handle
        self._options = options

        logger.info(f"Live server started (open: {paths or 'disabled'})")
        return handle

    def open(self, browser: Optional[str] = None) -> None:
        """
        Open the running server in a browser.

        Args:
            browser: Browser name (defaults to the `browser` option, then the
                platform default)
        """
        if self._handle is None or not self._options:
            logger.warning("Live server not running, cannot open browser")
            return

        value = self._options.get("open")
        if isinstance(value, (str, list, tuple)):
            paths = _as_paths(value)
        else:
            paths = _as_paths(self._options.get("openPath", ""))

        self._launch_browser(self._handle, self._options, paths, browser)

    def shutdown(self) -> None:
        """Shut down any running server"""
        if self._handle is None:
            return

        handle = self._handle
        self.server_factory.terminate(handle)
        self._options = {}
        self._handle = None

        logger.info("Live server shut down")

    def register(self, eventbus: EventBus) -> None:
        """
        Bind every operation to its event bus topic.

        Args:
            eventbus: Bus to bind on (replaces any previous binding)
        """
        self.unregister()
        self._eventbus = eventbus

        bindings: List[tuple] = [
            (EventTopic.OPTIONS_GET, lambda: self.options),
            (EventTopic.RUNNING, lambda: self.is_running),
            (EventTopic.SERVER_GET, lambda: self.server),
            (EventTopic.SHUTDOWN, self.shutdown),
            (EventTopic.START, self.start),
            (EventTopic.OPEN, self.open),
        ]
        for topic, callback in bindings:
            eventbus.on(topic, callback)
        self._bindings = bindings

    def unregister(self) -> None:
        """Remove every topic binding made by `register`"""
        if self._eventbus is not None:
            for topic, callback in self._bindings:
                self._eventbus.off(topic, callback)
        self._eventbus = None
        self._bindings = []

    def on_plugin_load(self, event: Any) -> None:
        """
        Plugin hook: store plugin options as defaults and bind topics.

        Args:
            event: Plugin event with `eventbus` and `plugin_options`
        """
        self.default_options = dict(event.plugin_options or {})
        self.register(event.eventbus)

    def on_plugin_unload(self, event: Any) -> None:
        """Plugin hook: stop the server and drop topic bindings"""
        self.dispose()

    def dispose(self) -> None:
        self.shutdown()
        self.unregister()

    def _launch_browser(
        self,
        handle: Any,
        options: Mapping,
        paths: List[str],
        browser: Optional[str] = None,
    ) -> None:
        # Called from the server's listening event; failures only get logged
        try:
            base_url = build_base_url(handle, options)
            launch_options: Dict[str, Any] = {
                "app": browser or options.get("browser") or None,
                "wait": False,
            }
            launch_options.update(options.get("opnOptions") or {})
        except Exception as e:
            logger.warning(f"Invalid browser launch options, not opening: {e}")
            return

        for path in paths:
            url = base_url + path
            try:
                self.browser_launcher.launch(url, launch_options)
            except Exception as e:
                logger.warning(f"Failed to launch browser for {url}: {e}")

    def __enter__(self):
        """Context manager entry"""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit"""
        self.shutdown()
        return False
