# API Module - Local HTTP/WebSocket surface

from .main import create_app, start_api_server

__all__ = ["create_app", "start_api_server"]
