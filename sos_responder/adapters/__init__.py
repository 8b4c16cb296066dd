"""
Adapters for SOS Responder hexagonal architecture.

This module contains the concrete implementations of port interfaces
that handle external I/O and infrastructure concerns.
"""

from .socketio_channel import SocketIOPresenceChannel
from .mqtt_channel import MqttPresenceChannel
from .http_api import AlertsApiClient, AuthSession
from .homeassistant import HAClient, HALocationTracker
from .location import StaticLocationTracker
from .storage import SQLiteKVStore
from .notify import HANotifier, LogNotifier

__all__ = [
    "SocketIOPresenceChannel", "MqttPresenceChannel", "AlertsApiClient", "AuthSession", "HAClient",
    "HALocationTracker", "StaticLocationTracker", "SQLiteKVStore", "HANotifier", "LogNotifier",
]
