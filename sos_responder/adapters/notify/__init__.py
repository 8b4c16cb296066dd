"""
Notification adapters for SOS Responder.
"""

from .notifiers import HANotifier, LogNotifier

__all__ = ["HANotifier", "LogNotifier"]
