"""
Home Assistant adapters for SOS Responder.
"""

from .client import HAClient
from .location import HALocationTracker

__all__ = ["HAClient", "HALocationTracker"]
