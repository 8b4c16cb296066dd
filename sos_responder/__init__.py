"""
SOS Responder: real-time alert synchronization for emergency responders.
"""

__version__ = "0.1.0"
