"""
Metrics definitions for SOS Responder.

This module defines Prometheus metrics for monitoring
the alert synchronization core and presence lifecycle.
"""

from prometheus_client import Counter, Gauge

# 카운터 메트릭
events_received = Counter(
    "sos_events_received_total",
    "Number of raw push events received",
    ["source"]
)

events_invalid = Counter(
    "sos_events_invalid_total",
    "Number of push events dropped by normalization"
)

events_stale = Counter(
    "sos_events_stale_total",
    "Pending declarations ignored for already removed alerts"
)

alerts_new = Counter(
    "sos_alerts_new_total",
    "Number of new alert notifications raised"
)

alerts_removed = Counter(
    "sos_alerts_removed_total",
    "Number of alerts removed from the pending working set"
)

accept_attempts = Counter(
    "sos_accept_attempts_total",
    "Accept attempts by outcome",
    ["outcome"]
)

channel_emits_dropped = Counter(
    "sos_channel_emits_dropped_total",
    "Outbound channel messages dropped while disconnected",
    ["transport"]
)

reconnects = Counter(
    "sos_channel_reconnects_total",
    "Presence channel connection attempts after a failure",
    ["transport"]
)

location_samples = Counter(
    "sos_location_samples_total",
    "Location samples forwarded to the presence channel"
)

# 게이지 메트릭
working_set_size = Gauge(
    "sos_working_set_size",
    "Current number of alerts in the pending working set"
)

presence_online = Gauge(
    "sos_presence_online",
    "1 when the responder is online, 0 otherwise"
)
