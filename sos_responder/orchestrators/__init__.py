"""
Orchestrators for SOS Responder.

This module contains the presence lifecycle controller and the
orchestrators that drive the responder and reporter flows.
"""

from .session import PresenceController, PresenceState
from .responder import ResponderOrchestrator
from .reporter import AlertReporter, ReportResult

__all__ = ["PresenceController", "PresenceState", "ResponderOrchestrator", "AlertReporter", "ReportResult"]
