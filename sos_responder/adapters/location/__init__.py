"""
Location adapters for SOS Responder.
"""

from .static import StaticLocationTracker

__all__ = ["StaticLocationTracker"]
