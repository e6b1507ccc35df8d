"""Process-wide Prometheus counters for the ingest pipeline.

Registered once at import time so repeated ``create_app()`` calls (tests) do
not trip the default registry's duplicate-name check.
"""
from prometheus_client import Counter

webhook_auth_denied_total = Counter(
    "webhook_auth_denied_total",
    "Webhook deliveries rejected by the authenticator, by internal reason",
    ["reason"],
)

webhook_events_ingested_total = Counter(
    "webhook_events_ingested_total",
    "Events persisted to the event log",
    ["source_system", "mapped"],
)

event_normalization_degraded_total = Counter(
    "event_normalization_degraded_total",
    "Events ingested with the raw name because standardization failed",
)

fanout_secondary_failures_total = Counter(
    "fanout_secondary_failures_total",
    "Best-effort sink writes that failed and were swallowed",
    ["sink"],
)

fanout_self_heal_total = Counter(
    "fanout_self_heal_total",
    "Event log writes retried after creating the placeholder actor",
)

metrics = {
    "webhook_auth_denied_total": webhook_auth_denied_total,
    "webhook_events_ingested_total": webhook_events_ingested_total,
    "event_normalization_degraded_total": event_normalization_degraded_total,
    "fanout_secondary_failures_total": fanout_secondary_failures_total,
    "fanout_self_heal_total": fanout_self_heal_total,
}
