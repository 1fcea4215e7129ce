"""
Tests for the static file server

Covers launch settings validation, the ASGI app (through TestClient)
and a real uvicorn server on loopback.
"""

import socket

import pytest
import requests
from fastapi import status
from fastapi.testclient import TestClient
from pydantic import ValidationError

from core import (
    BoundAddress,
    Connection,
    LaunchSettings,
    LogLevel,
    ServerEvent,
    StaticFileServer,
    create_app,
)
from core.static_server import bind_socket


LISTEN_TIMEOUT = 5


class TestLaunchSettings:
    """Tests for LaunchSettings validation"""

    def test_defaults(self):
        """Test defaults come from the live server config"""
        # Act
        settings = LaunchSettings()

        # Assert
        assert settings.root == "."
        assert settings.host == "0.0.0.0"
        assert settings.port == 8080
        assert settings.log_level == LogLevel.ERRORS
        assert settings.tls is None

    def test_unknown_keys_ignored(self):
        """Test controller-only options pass through harmlessly"""
        # Act
        settings = LaunchSettings.model_validate({
            "open": False,
            "browser": "firefox",
            "opnOptions": {"wait": False},
            "test": True,
        })

        # Assert
        assert not hasattr(settings, "browser")

    @pytest.mark.parametrize("value,expected", [
        (0, LogLevel.ERRORS),
        (1, LogLevel.SOME),
        (2, LogLevel.LOTS),
        (3, LogLevel.LOTS),
        (-1, LogLevel.ERRORS),
    ])
    def test_log_level_alias_and_clamp(self, value, expected):
        """Test logLevel is read through its alias and clamped to 0-2"""
        settings = LaunchSettings.model_validate({"logLevel": value})

        assert settings.log_level == expected

    def test_log_level_uvicorn_names(self):
        assert LogLevel.ERRORS.uvicorn_level == "error"
        assert LogLevel.SOME.uvicorn_level == "info"
        assert LogLevel.LOTS.uvicorn_level == "debug"

    def test_https_true_without_certificate_rejected(self):
        """Test https True needs certificate material"""
        with pytest.raises(ValidationError):
            LaunchSettings.model_validate({"https": True})

    def test_https_mapping(self):
        """Test https mapping becomes TLS settings"""
        # Act
        settings = LaunchSettings.model_validate({
            "https": {"certfile": "cert.pem", "keyfile": "key.pem"},
        })

        # Assert
        assert settings.tls.certfile == "cert.pem"
        assert settings.tls.keyfile == "key.pem"
        assert settings.tls.password is None

    @pytest.mark.parametrize("value", [None, False])
    def test_https_off(self, value):
        assert LaunchSettings.model_validate({"https": value}).tls is None

    def test_port_out_of_range_rejected(self):
        with pytest.raises(ValidationError):
            LaunchSettings.model_validate({"port": 70000})


class TestStaticApp:
    """Tests for the ASGI app built from launch settings"""

    def test_index_served_as_html(self, fixture_root):
        """Test / serves index.html with a utf-8 html content type"""
        # Arrange
        client = TestClient(create_app(LaunchSettings(root=fixture_root)))

        # Act
        response = client.get("/")

        # Assert
        assert response.status_code == status.HTTP_200_OK
        assert response.headers["content-type"].lower() == "text/html; charset=utf-8"
        assert "A test" in response.text

    def test_missing_file_is_404(self, fixture_root):
        """Test unknown paths return 404 without an entry file"""
        client = TestClient(create_app(LaunchSettings(root=fixture_root)))

        response = client.get("/missing.js")

        assert response.status_code == status.HTTP_404_NOT_FOUND

    def test_entry_file_fallback(self, fixture_root):
        """Test unknown paths serve the entry file for single page apps"""
        # Arrange
        settings = LaunchSettings(root=fixture_root, file="index.html")
        client = TestClient(create_app(settings))

        # Act
        response = client.get("/app/route/that/does/not/exist")

        # Assert
        assert response.status_code == status.HTTP_200_OK
        assert "A test" in response.text

    def test_mount(self, fixture_root):
        """Test extra mounts serve their directory under the route"""
        # Arrange
        settings = LaunchSettings.model_validate({
            "root": fixture_root,
            "mount": [["/manual", f"{fixture_root}/docs"]],
        })
        client = TestClient(create_app(settings))

        # Act
        response = client.get("/manual/")

        # Assert
        assert response.status_code == status.HTTP_200_OK
        assert "Docs fixture" in response.text

    def test_cors(self, fixture_root):
        """Test cors adds access control headers"""
        # Arrange
        client = TestClient(create_app(LaunchSettings(root=fixture_root, cors=True)))

        # Act
        response = client.get("/", headers={"Origin": "http://example.com"})

        # Assert
        assert "access-control-allow-origin" in response.headers


@pytest.fixture
def servers():
    """
    Static file server that terminates every launched handle

    Yields:
        (StaticFileServer, list of launched handles)
    """
    factory = StaticFileServer()
    handles = []
    yield factory, handles
    for handle in handles:
        factory.terminate(handle)


def _launch(servers, fixture_root, **options):
    factory, handles = servers
    handle = factory.launch({"root": fixture_root, "host": "127.0.0.1", "port": 0, **options})
    handles.append(handle)
    return handle


class TestStaticFileServer:
    """Tests against a real uvicorn server on loopback"""

    def test_launch_missing_root(self, servers):
        """Test a missing root directory raises before binding"""
        factory, _ = servers

        with pytest.raises(FileNotFoundError):
            factory.launch({"root": "/nonexistent/live-server-root", "port": 0})

    def test_launch_missing_mount(self, servers, fixture_root):
        factory, _ = servers

        with pytest.raises(FileNotFoundError):
            factory.launch({"root": fixture_root, "port": 0, "mount": [["/x", "/nonexistent/dir"]]})

    def test_address_available_immediately(self, servers, fixture_root):
        """Test address() reports the bound port before listening"""
        # Act
        handle = _launch(servers, fixture_root)

        # Assert
        address = handle.address()
        assert isinstance(address, BoundAddress)
        assert address.address == "127.0.0.1"
        assert address.port > 0

    def test_serves_fixture(self, servers, fixture_root):
        """Test GET / over a real socket"""
        # Arrange
        handle = _launch(servers, fixture_root)
        assert handle.wait_until_listening(LISTEN_TIMEOUT)

        # Act
        response = requests.get(f"http://127.0.0.1:{handle.address().port}/", timeout=LISTEN_TIMEOUT)

        # Assert
        assert response.status_code == 200
        assert response.headers["Content-Type"].lower() == "text/html; charset=utf-8"
        assert "A test" in response.text

    def test_listening_once_after_listening_fires_immediately(self, servers, fixture_root):
        """Test late listening subscribers are not lost"""
        # Arrange
        handle = _launch(servers, fixture_root)
        assert handle.wait_until_listening(LISTEN_TIMEOUT)
        calls = []

        # Act
        handle.once(ServerEvent.LISTENING, lambda: calls.append("listening"))

        # Assert
        assert calls == ["listening"]
        assert handle.listening is True

    def test_connection_events(self, servers, fixture_root):
        """Test accepted transports are reported and can be unref'd"""
        # Arrange
        handle = _launch(servers, fixture_root)
        seen = []
        handle.on("connection", lambda connection: seen.append(connection.unref()))
        assert handle.wait_until_listening(LISTEN_TIMEOUT)

        # Act
        with requests.Session() as session:
            session.get(f"http://127.0.0.1:{handle.address().port}/", timeout=LISTEN_TIMEOUT)
            open_connections = handle.connections

        # Assert
        assert len(seen) >= 1
        assert all(isinstance(connection, Connection) for connection in seen)
        assert all(connection.referenced is False for connection in seen)
        assert open_connections

    def test_terminate_with_idle_keep_alive(self, servers, fixture_root):
        """Test an idle keep-alive connection does not hold up terminate"""
        # Arrange
        factory, handles = servers
        handle = _launch(servers, fixture_root)
        handle.on("connection", lambda connection: connection.unref())
        assert handle.wait_until_listening(LISTEN_TIMEOUT)
        session = requests.Session()
        session.get(f"http://127.0.0.1:{handle.address().port}/", timeout=LISTEN_TIMEOUT)

        # Act
        factory.terminate(handle)

        # Assert
        assert handle.listening is False
        with pytest.raises(requests.ConnectionError):
            requests.get(f"http://127.0.0.1:{handle.address().port}/", timeout=1)
        session.close()

    def test_port_in_use(self, servers, fixture_root):
        """Test binding an occupied port raises OSError from launch"""
        # Arrange
        handle = _launch(servers, fixture_root)
        assert handle.wait_until_listening(LISTEN_TIMEOUT)

        # Act & Assert
        with pytest.raises(OSError):
            _launch(servers, fixture_root, port=handle.address().port)

    def test_port_in_use_before_first_listens(self, servers, fixture_root):
        """Test a second launch on the same port fails without waiting"""
        # Arrange
        handle = _launch(servers, fixture_root)

        # Act & Assert
        with pytest.raises(OSError):
            _launch(servers, fixture_root, port=handle.address().port)

    def test_missing_certificate_raises_from_launch(self, servers, fixture_root):
        """Test unreadable TLS material fails on the caller and frees the port"""
        # Arrange
        factory, _ = servers
        options = {
            "root": fixture_root,
            "host": "127.0.0.1",
            "port": 0,
            "https": {"certfile": "/nonexistent/cert.pem", "keyfile": "/nonexistent/key.pem"},
        }

        # Act & Assert
        with pytest.raises(OSError):
            factory.launch(options)

    def test_observers_see_first_connection(self, servers, fixture_root):
        """Test launch observers are attached before any connection is accepted"""
        # Arrange
        factory, handles = servers
        seen = []
        handle = factory.launch(
            {"root": fixture_root, "host": "127.0.0.1", "port": 0},
            observers={ServerEvent.CONNECTION: lambda connection: seen.append(connection.unref())},
        )
        handles.append(handle)

        # Act
        response = requests.get(f"http://127.0.0.1:{handle.address().port}/", timeout=LISTEN_TIMEOUT)

        # Assert
        assert response.status_code == 200
        assert len(seen) >= 1
        assert all(connection.referenced is False for connection in seen)

    def test_failing_listening_subscriber_keeps_serving(self, servers, fixture_root):
        """Test an exception in a listening callback does not stop the server"""
        # Arrange
        factory, handles = servers

        def fail():
            raise ValueError("bad subscriber")

        handle = factory.launch(
            {"root": fixture_root, "host": "127.0.0.1", "port": 0},
            observers={ServerEvent.LISTENING: fail},
        )
        handles.append(handle)
        assert handle.wait_until_listening(LISTEN_TIMEOUT)

        # Act
        response = requests.get(f"http://127.0.0.1:{handle.address().port}/", timeout=LISTEN_TIMEOUT)

        # Assert
        assert response.status_code == 200
        assert handle.listening is True

    def test_terminate_twice(self, servers, fixture_root):
        """Test terminating a stopped handle is harmless"""
        factory, _ = servers
        handle = _launch(servers, fixture_root)
        assert handle.wait_until_listening(LISTEN_TIMEOUT)

        factory.terminate(handle)
        factory.terminate(handle)

        assert handle.listening is False


def test_bind_socket_port_in_use():
    """Test binding a listening port raises OSError"""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as holder:
        holder.bind(("127.0.0.1", 0))
        holder.listen()
        port = holder.getsockname()[1]

        with pytest.raises(OSError):
            bind_socket("127.0.0.1", port)
