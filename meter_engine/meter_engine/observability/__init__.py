"""Metric-key codec, daily series reconstruction and anomaly detection."""

from meter_engine.observability.anomaly import AlertSeverity, ObservabilityAlert
from meter_engine.observability.codec import MetricKey, decode_metric_key, encode_metric_key

__all__ = [
    "AlertSeverity",
    "MetricKey",
    "ObservabilityAlert",
    "decode_metric_key",
    "encode_metric_key",
]
