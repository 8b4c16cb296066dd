"""
Observability for SOS Responder.

Logging (loguru), Prometheus metrics and the FastAPI status surface.
"""
