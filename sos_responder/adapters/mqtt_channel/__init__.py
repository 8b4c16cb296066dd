"""
MQTT presence channel adapter.
"""

from .channel import MqttPresenceChannel

__all__ = ["MqttPresenceChannel"]
