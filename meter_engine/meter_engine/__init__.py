"""Salon usage metering, quota enforcement and observability engine."""

__version__ = "0.4.0"
