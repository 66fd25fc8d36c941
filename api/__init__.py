"""
Local Vision Chat Service

Provides REST and WebSocket APIs over the model hub.
"""

from .main import app

__all__ = ["app"]
