"""
Live server lifecycle management.

Provides the controller owning the single live development server
and its event bus bindings.
"""

from .live_server import (
    LiveServer,
    ServerState,
    InvalidOptionsError,
    build_base_url,
    resolve_open_paths,
)

__all__ = [
    'LiveServer',
    'ServerState',
    'InvalidOptionsError',
    'build_base_url',
    'resolve_open_paths',
]
