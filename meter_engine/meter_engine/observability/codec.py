"""Flattened metric-key codec.

Metrics are handled internally as :class:`MetricKey` pairs and flattened to
a single string only at the store boundary::

    api.request.count                   -> MetricKey("api.request.count", None)
    api.request.count::GET /bookings    -> MetricKey("api.request.count", "GET /bookings")

This module is the only place that knows the separator.
"""

from __future__ import annotations

from dataclasses import dataclass

SEPARATOR = "::"


@dataclass(frozen=True, order=True)
class MetricKey:
    """A metric base name with an optional dimension."""

    name: str
    dimension: str | None = None

    def encode(self) -> str:
        return encode_metric_key(self.name, self.dimension)

    @classmethod
    def decode(cls, key: str) -> MetricKey:
        return decode_metric_key(key)

    def __str__(self) -> str:
        return self.encode()


def encode_metric_key(name: str, dimension: str | None = None) -> str:
    """Flatten *name* and *dimension* into one key.

    Raises
    ------
    ValueError
        If *name* is empty or contains the separator, since such a key
        could not be decoded back to the same pair.
    """
    if not name:
        raise ValueError("Metric name must not be empty")
    if SEPARATOR in name:
        raise ValueError(f"Metric name must not contain {SEPARATOR!r}: {name!r}")
    if dimension is None:
        return name
    return f"{name}{SEPARATOR}{dimension}"


def decode_metric_key(key: str) -> MetricKey:
    """Split *key* on the first separator into a :class:`MetricKey`."""
    name, sep, dimension = key.partition(SEPARATOR)
    if not sep:
        return MetricKey(name, None)
    return MetricKey(name, dimension)
