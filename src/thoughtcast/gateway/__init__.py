"""Viewer-facing HTTP/WebSocket gateway.

A thin FastAPI application: accepts viewer connections and control
commands and hands them to the LiveTerminalEngine.
"""

from thoughtcast.gateway.server import create_app

__all__ = ["create_app"]
