"""
Port interfaces for SOS Responder hexagonal architecture.

This module defines the port interfaces (Protocols) that define
the contracts between the synchronization core and external adapters.
"""

from .channel import PresenceChannelPort, EventHandler
from .location import LocationTrackerPort, SampleCallback
from .alerts_api import AlertApiPort
from .identity import IdentityPort
from .kvstore import KVStorePort
from .notify import NotifierPort, NotifyLevel

__all__ = [
    "PresenceChannelPort", "EventHandler", "LocationTrackerPort", "SampleCallback", "AlertApiPort",
    "IdentityPort", "KVStorePort", "NotifierPort", "NotifyLevel",
]
