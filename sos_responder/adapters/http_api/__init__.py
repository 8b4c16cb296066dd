"""
HTTP adapters for the dispatch server REST API.
"""

from .alerts_client import AlertsApiClient
from .auth_client import AuthSession, UserProfile

__all__ = ["AlertsApiClient", "AuthSession", "UserProfile"]
