"""
Socket.IO presence channel adapter.
"""

from .channel import SocketIOPresenceChannel

__all__ = ["SocketIOPresenceChannel"]
