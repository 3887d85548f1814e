from prometheus_client import Counter, Gauge

ACTIONS = Counter(
    "sseload_actions_total", "Actions performed by simulated users", ["kind", "result"]
)
CONNECTED_USERS = Gauge("sseload_connected_users", "Users currently connected to the board")
DROPPED_STREAM_EVENTS = Counter(
    "sseload_stream_events_dropped_total", "Stream events dropped because the user queue was full"
)
EVENTS_RECEIVED = Gauge("sseload_events_received", "Deliveries matched to a sent event")
EVENTS_SENT = Gauge("sseload_events_sent", "Events recorded as sent")
PENDING_EVENTS = Gauge("sseload_pending_events", "Received events waiting for their sent event")
