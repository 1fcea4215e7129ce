"""
Static file development server.

Serves a directory through Starlette's `StaticFiles` mounted on a FastAPI app,
run by uvicorn on a daemon thread. `launch()` binds the listening socket on the
calling thread, so bind failures (port in use, bad host) raise immediately,
and returns a `DevServerHandle` exposing:

- `"connection"` events carrying a `Connection` for every accepted transport
- a one-shot `"listening"` event once uvicorn has started serving
- `address()` with the bound address and port
"""

import asyncio
import functools
import logging
import socket
import threading
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, NamedTuple, Optional, Tuple, Union

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel, Field, field_validator, model_validator
from starlette.exceptions import HTTPException as StarletteHTTPException
from uvicorn.protocols.http.h11_impl import H11Protocol

from .config import LIVE_SERVER_CONFIG, LiveServerConfig
from .constants import LogLevel, ServerEvent
from .event_bus import EventBus

logger = logging.getLogger(__name__)


class HttpsSettings(BaseModel):
    """TLS certificate material"""
    certfile: str = Field(..., description="PEM certificate chain")
    keyfile: str = Field(..., description="PEM private key")
    password: Optional[str] = Field(None, description="Private key password")


class LaunchSettings(BaseModel):
    """Options understood by the static file server; other keys are ignored"""
    root: str = Field(LIVE_SERVER_CONFIG.default_root, description="Directory to serve")
    host: str = Field(LIVE_SERVER_CONFIG.default_host, description="Bind address")
    port: int = Field(LIVE_SERVER_CONFIG.default_port, ge=0, le=65535, description="Bind port (0 = any free port)")
    https: Union[bool, HttpsSettings, None] = Field(False, description="Serve over TLS")
    log_level: LogLevel = Field(LogLevel.ERRORS, alias="logLevel", description="0 = errors only, 1 = some, 2 = lots")
    cors: bool = Field(False, description="Allow cross-origin requests from any origin")
    mount: List[Tuple[str, str]] = Field(default_factory=list, description="Extra [route, directory] mounts")
    file: Optional[str] = Field(None, description="Entry point served for unknown paths (single page apps)")
    middleware: List[Any] = Field(default_factory=list, description="ASGI middleware classes")

    model_config = {
        "extra": "ignore",
        "populate_by_name": True,
        "arbitrary_types_allowed": True,
    }

    @field_validator("log_level", mode="before")
    @classmethod
    def _clamp_log_level(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            return min(max(value, LogLevel.ERRORS.value), LogLevel.LOTS.value)
        return value

    @field_validator("https", mode="before")
    @classmethod
    def _https_none_is_off(cls, value: Any) -> Any:
        return False if value is None else value

    @model_validator(mode="after")
    def _https_needs_certificate(self) -> "LaunchSettings":
        if self.https is True:
            raise ValueError("'https' requires a mapping with 'certfile' and 'keyfile'")
        return self

    @property
    def tls(self) -> Optional[HttpsSettings]:
        return self.https if isinstance(self.https, HttpsSettings) else None


class BoundAddress(NamedTuple):
    """Address and port a server socket is bound to"""
    address: str
    port: int


class Connection:
    """
    An accepted client transport.

    Connections are referenced by default: on shutdown uvicorn lets them finish
    their in-flight request. `unref()` marks a connection as never holding up
    shutdown; it is aborted as soon as the server closes.
    """

    def __init__(self, transport: asyncio.BaseTransport):
        self.transport = transport
        self.referenced = True

    def unref(self) -> "Connection":
        self.referenced = False
        return self

    def ref(self) -> "Connection":
        self.referenced = True
        return self

    @property
    def peername(self) -> Any:
        return self.transport.get_extra_info("peername")

    def abort(self) -> None:
        if not self.transport.is_closing():
            self.transport.abort()


class _ObservedH11Protocol(H11Protocol):
    """h11 protocol reporting transport lifetime to its handle"""

    def __init__(self, *args: Any, handle: "DevServerHandle", **kwargs: Any):
        super().__init__(*args, **kwargs)
        self._handle = handle

    def connection_made(self, transport: asyncio.Transport) -> None:
        super().connection_made(transport)
        self._handle._connection_made(transport)

    def connection_lost(self, exc: Optional[Exception]) -> None:
        super().connection_lost(exc)
        self._handle._connection_lost(self.transport)


class _UvicornServer(uvicorn.Server):
    """uvicorn server reporting when startup has completed"""

    def __init__(self, config: uvicorn.Config, on_started: Callable[[], None]):
        super().__init__(config)
        self.event_loop: Optional[asyncio.AbstractEventLoop] = None
        self._on_started = on_started

    async def startup(self, sockets: Optional[List[socket.socket]] = None) -> None:
        self.event_loop = asyncio.get_running_loop()
        await super().startup(sockets=sockets)
        if self.started:
            self._on_started()


class _EntryPointStaticFiles(StaticFiles):
    """StaticFiles answering unknown paths with a single entry point file"""

    def __init__(self, *, entry_file: Path, **kwargs: Any):
        super().__init__(**kwargs)
        self.entry_file = entry_file

    async def get_response(self, path: str, scope: Any):
        try:
            return await super().get_response(path, scope)
        except StarletteHTTPException as exc:
            if exc.status_code != 404:
                raise
            return FileResponse(self.entry_file)


def create_app(settings: LaunchSettings) -> FastAPI:
    """
    Build the ASGI app serving `settings.root`.

    Args:
        settings: Validated launch settings

    Returns:
        FastAPI app with static mounts and requested middleware
    """
    app = FastAPI(
        title="Live Server",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )

    if settings.cors:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    for middleware in settings.middleware:
        app.add_middleware(middleware)

    # Specific mounts first, "/" matches everything
    for route, directory in settings.mount:
        app.mount(route, StaticFiles(directory=directory, html=True), name=f"mount:{route}")

    if settings.file:
        root_files = _EntryPointStaticFiles(
            directory=settings.root,
            html=True,
            entry_file=Path(settings.root) / settings.file,
        )
    else:
        root_files = StaticFiles(directory=settings.root, html=True)

    app.mount("/", root_files, name="root")
    return app


def bind_socket(host: str, port: int, backlog: int = LIVE_SERVER_CONFIG.listen_backlog) -> socket.socket:
    """
    Bind and listen on a TCP socket on the calling thread.

    The socket is listening when this returns, so a second bind of the same
    port fails here rather than on the server thread.

    Raises:
        OSError: If the address cannot be bound (e.g. port in use)
    """
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    sock = socket.socket(family, socket.SOCK_STREAM)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((host, port))
        sock.listen(backlog)
    except OSError:
        sock.close()
        raise
    return sock


class DevServerHandle:
    """
    A running static file server.

    Events:
        connection: callback(connection) for every accepted transport
        listening: callback() once the server accepts connections. Subscribing
            after the server is already listening invokes the callback at once.
    """

    def __init__(
        self,
        settings: LaunchSettings,
        app: FastAPI,
        sock: socket.socket,
        config: LiveServerConfig = LIVE_SERVER_CONFIG,
    ):
        self.settings = settings
        self.app = app
        self._socket = sock
        self._address = BoundAddress(*sock.getsockname()[:2])
        self._config = config
        self._events = EventBus(name=f"dev-server {self._address.address}:{self._address.port}")
        self._listening = threading.Event()
        self._connections: Dict[Any, Connection] = {}
        self._lock = threading.RLock()

        tls = settings.tls
        uvicorn_config = uvicorn.Config(
            app,
            host=self._address.address,
            port=self._address.port,
            http=functools.partial(_ObservedH11Protocol, handle=self),
            ws="none",
            loop="asyncio",
            lifespan="off",
            log_config=None,
            log_level=settings.log_level.uvicorn_level,
            access_log=settings.log_level >= LogLevel.LOTS,
            backlog=config.listen_backlog,
            timeout_graceful_shutdown=int(config.graceful_shutdown_timeout),
            ssl_certfile=tls.certfile if tls else None,
            ssl_keyfile=tls.keyfile if tls else None,
            ssl_keyfile_password=tls.password if tls else None,
        )
        # Loads the TLS context here so bad certificate material raises on the caller
        uvicorn_config.load()
        self._server = _UvicornServer(uvicorn_config, on_started=self._started)
        self._thread = threading.Thread(
            target=self._serve,
            name=f"live-server {self._address.port}",
            daemon=True,
        )

    def start(self) -> "DevServerHandle":
        """Start serving on the background thread"""
        self._thread.start()
        return self

    def address(self) -> BoundAddress:
        return self._address

    @property
    def listening(self) -> bool:
        return self._listening.is_set()

    @property
    def connections(self) -> List[Connection]:
        """Currently open connections"""
        with self._lock:
            return list(self._connections.values())

    def wait_until_listening(self, timeout: Optional[float] = None) -> bool:
        """
        Block until the server listens.

        Returns:
            True if listening within the timeout
        """
        return self._listening.wait(timeout)

    def on(self, event: Union[str, ServerEvent], callback: Callable[..., Any]) -> "DevServerHandle":
        return self._subscribe(ServerEvent(event), callback, once=False)

    def once(self, event: Union[str, ServerEvent], callback: Callable[..., Any]) -> "DevServerHandle":
        return self._subscribe(ServerEvent(event), callback, once=True)

    def off(self, event: Union[str, ServerEvent], callback: Optional[Callable[..., Any]] = None) -> "DevServerHandle":
        self._events.off(ServerEvent(event), callback)
        return self

    def close(self, timeout: Optional[float] = None) -> None:
        """
        Stop serving and release the socket.

        Unreferenced connections are aborted; referenced ones get uvicorn's
        graceful drain.

        Args:
            timeout: Seconds to wait for the server thread
        """
        if timeout is None:
            timeout = self._config.thread_join_timeout

        if self._thread.ident is None:
            self._socket.close()
            return

        if not self._thread.is_alive():
            return

        logger.info(f"Stopping server on port {self._address.port}")
        self._abort_unreferenced()
        self._server.should_exit = True
        self._thread.join(timeout)

        if self._thread.is_alive():
            logger.warning(
                f"Server did not stop within {timeout}s, forcing exit"
            )
            self._server.force_exit = True
            self._thread.join(self._config.graceful_shutdown_timeout)

    def _subscribe(self, event: ServerEvent, callback: Callable[..., Any], once: bool) -> "DevServerHandle":
        with self._lock:
            fire_now = event is ServerEvent.LISTENING and self._listening.is_set()
            if not fire_now:
                if once:
                    self._events.once(event, callback)
                else:
                    self._events.on(event, callback)

        if fire_now:
            callback()
        return self

    def _serve(self) -> None:
        try:
            self._server.run(sockets=[self._socket])
        except Exception:
            logger.exception(f"Server on port {self._address.port} stopped with an error")
        finally:
            self._listening.clear()
            self._socket.close()
            logger.info(f"Server on port {self._address.port} closed")

    def _emit(self, event: ServerEvent, *args: Any) -> None:
        # Runs inside uvicorn; a raising subscriber must not stop the server
        try:
            self._events.trigger(event, *args)
        except Exception:
            logger.exception(f"'{event.value}' subscriber failed on port {self._address.port}")

    def _started(self) -> None:
        with self._lock:
            self._listening.set()
        logger.info(
            f"Serving {self.settings.root} on {self._address.address}:{self._address.port}"
        )
        self._emit(ServerEvent.LISTENING)

    def _connection_made(self, transport: asyncio.Transport) -> None:
        connection = Connection(transport)
        with self._lock:
            self._connections[transport] = connection
        logger.debug(f"Connection from {connection.peername}")
        self._emit(ServerEvent.CONNECTION, connection)

    def _connection_lost(self, transport: asyncio.Transport) -> None:
        with self._lock:
            self._connections.pop(transport, None)

    def _abort_unreferenced(self) -> None:
        loop = self._server.event_loop
        if loop is None:
            return

        for connection in self.connections:
            if connection.referenced:
                continue
            try:
                loop.call_soon_threadsafe(connection.abort)
            except RuntimeError:
                # Loop already closed; the transport went with it
                logger.debug(f"Event loop closed before aborting {connection.peername}")


class StaticFileServer:
    """
    Launches and terminates static file servers.

    Example:
        servers = StaticFileServer()
        handle = servers.launch({"root": "./site", "port": 0})
        handle.wait_until_listening(5)
        servers.terminate(handle)
    """

    def __init__(self, config: LiveServerConfig = LIVE_SERVER_CONFIG):
        self.config = config

    def launch(
        self,
        options: Mapping[str, Any],
        observers: Optional[Mapping[ServerEvent, Callable[..., Any]]] = None,
    ) -> DevServerHandle:
        """
        Start serving.

        Args:
            options: Server options (see `LaunchSettings`)
            observers: Event callbacks subscribed before the server thread
                starts, so no connection is accepted unobserved

        Returns:
            Handle of the started server

        Raises:
            pydantic.ValidationError: If options are malformed
            FileNotFoundError: If the root directory or TLS material does not exist
            OSError: If the address cannot be bound
            ssl.SSLError: If the TLS material cannot be loaded
        """
        settings = LaunchSettings.model_validate(dict(options))

        root = Path(settings.root)
        if not root.is_dir():
            raise FileNotFoundError(f"Server root not found: {settings.root}")

        for _, directory in settings.mount:
            if not Path(directory).is_dir():
                raise FileNotFoundError(f"Mount directory not found: {directory}")

        app = create_app(settings)
        sock = bind_socket(settings.host, settings.port, self.config.listen_backlog)
        try:
            handle = DevServerHandle(settings, app, sock, self.config)
        except Exception:
            sock.close()
            raise

        for event, callback in (observers or {}).items():
            handle.on(event, callback)

        logger.info(f"Launching server for {root.resolve()} on port {handle.address().port}")
        return handle.start()

    def terminate(self, handle: DevServerHandle) -> None:
        """Stop a server started by `launch`"""
        handle.close(self.config.thread_join_timeout)
