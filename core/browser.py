"""
Browser launcher.

Opens URLs through the `webbrowser` controller registry. With `wait=False`
the launch runs on a daemon thread so the caller never blocks on (or is kept
alive by) the browser process.
"""

import logging
import threading
import webbrowser
from typing import Any, Dict, Mapping, Optional, Union

from .config import LIVE_SERVER_CONFIG

logger = logging.getLogger(__name__)


class BrowserLauncher:
    """
    Launch URLs in a browser.

    Recognized options:
        app: Registered browser name (None = platform default)
        wait: Block until the controller returns (default True)
        new: 0 same window, 1 new window, 2 new tab
        autoraise: Raise the browser window
    """

    def __init__(self, registry=webbrowser):
        self._registry = registry

    def launch(
        self,
        url: str,
        options: Optional[Mapping[str, Any]] = None,
    ) -> Union[bool, threading.Thread]:
        """
        Open a URL.

        Args:
            url: URL to open
            options: Launcher options (see class docstring)

        Returns:
            The controller's result when waiting, otherwise the started
            daemon thread

        Raises:
            webbrowser.Error: If waiting and the requested browser is unknown
        """
        settings = self._settings(options)

        if settings["wait"]:
            return self._open(url, settings)

        thread = threading.Thread(
            target=self._open_detached,
            args=(url, settings),
            name=f"browser-launch {url}",
            daemon=True,
        )
        thread.start()
        return thread

    def _settings(self, options: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
        settings: Dict[str, Any] = {
            "app": None,
            "wait": True,
            "new": LIVE_SERVER_CONFIG.browser_new,
            "autoraise": LIVE_SERVER_CONFIG.browser_autoraise,
        }
        settings.update(options or {})
        return settings

    def _open(self, url: str, settings: Dict[str, Any]) -> bool:
        controller = self._registry.get(settings["app"])
        logger.info(f"Opening {url} in {settings['app'] or 'default browser'}")
        return controller.open(url, new=settings["new"], autoraise=settings["autoraise"])

    def _open_detached(self, url: str, settings: Dict[str, Any]) -> None:
        try:
            if not self._open(url, settings):
                logger.warning(f"Browser did not report opening {url}")
        except Exception as e:
            logger.warning(f"Failed to open browser for {url}: {e}")
