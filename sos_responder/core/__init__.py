"""
Core domain models and pure functions for SOS Responder.

This module contains the domain models, the alert reconciler state machine
and the marker projection, all independent of external I/O.
"""

from .models import Alert, AlertEvent, AlertStatus, EntryState, MapBounds, Marker, Position, ResponderPresence
from .errors import (
    SOSError, LocationUnavailable, AlreadyAccepting, NotFound, Conflict, AlertApiError, NotAuthenticated,
)
from .normalize import to_alert, to_event
from .reconciler import AcceptOutcome, AcceptResult, AlertReconciler, Change, ChangeKind, Entry
from .projector import display_label, fit_bounds, project

__all__ = [
    "Alert", "AlertEvent", "AlertStatus", "EntryState", "MapBounds", "Marker", "Position", "ResponderPresence",
    "SOSError", "LocationUnavailable", "AlreadyAccepting", "NotFound", "Conflict", "AlertApiError",
    "NotAuthenticated", "to_alert", "to_event", "AcceptOutcome", "AcceptResult", "AlertReconciler",
    "Change", "ChangeKind", "Entry", "display_label", "fit_bounds", "project",
]
