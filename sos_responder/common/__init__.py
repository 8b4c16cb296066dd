"""
Common utilities for SOS Responder.

This module contains geographic helpers and retry/backoff utilities
shared by adapters and orchestrators.
"""

from .geo import haversine_distance, validate_coordinates
from .retry import backoff_delay, exponential_backoff, retry_with_backoff

__all__ = ["haversine_distance", "validate_coordinates", "backoff_delay", "exponential_backoff", "retry_with_backoff"]
