"""FastAPI edge API for usage metering, quotas and observability."""

__version__ = "0.4.0"
