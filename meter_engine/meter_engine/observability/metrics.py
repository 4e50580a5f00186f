"""Per-request metric buffer.

Request handlers append samples to the buffer attached to the request;
the instrumentation middleware adds the request-level counters and
persists the lot once the response is ready.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import UTC, datetime

from meter_engine.observability.codec import MetricKey


@dataclass(frozen=True)
class MetricSample:
    """One metric observation waiting to be persisted."""

    key: MetricKey
    value: float
    occurred_at: datetime = field(default_factory=lambda: datetime.now(UTC))


class MetricBuffer:
    """Collects samples for one request; not shared across requests."""

    def __init__(self) -> None:
        self._samples: list[MetricSample] = []

    def record(
        self,
        name: str,
        value: float = 1.0,
        dimension: str | None = None,
        occurred_at: datetime | None = None,
    ) -> MetricSample:
        """Append a sample for ``(name, dimension)``."""
        sample = MetricSample(
            key=MetricKey(name, dimension),
            value=float(value),
            occurred_at=occurred_at or datetime.now(UTC),
        )
        self._samples.append(sample)
        return sample

    def record_with_total(
        self,
        name: str,
        value: float,
        dimension: str,
        occurred_at: datetime | None = None,
    ) -> None:
        """Append an undimensioned total and a dimensioned sample together."""
        moment = occurred_at or datetime.now(UTC)
        self.record(name, value, None, moment)
        self.record(name, value, dimension, moment)

    def drain(self) -> list[MetricSample]:
        """Return and clear all buffered samples."""
        samples, self._samples = self._samples, []
        return samples

    def __iter__(self) -> Iterator[MetricSample]:
        return iter(list(self._samples))

    def __len__(self) -> int:
        return len(self._samples)
