"""Metered-quantity derivation shared by quota checks and the rollup.

Quantities arrive from the store as ``Decimal`` or ``float`` and from
clients as whatever JSON produced, so every read goes through
:func:`normalize_number` before it is summed.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from decimal import Decimal, InvalidOperation
from typing import Any

from meter_engine.metering.quotas import QuotaMeasurement


def normalize_number(value: Any, fallback: float) -> float:
    """Coerce *value* to a finite float, returning *fallback* when that fails.

    Booleans are not numbers here even though ``bool`` subclasses ``int``.
    """
    if value is None or isinstance(value, bool):
        return fallback
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, Decimal):
        try:
            number = float(value)
        except (InvalidOperation, ValueError):
            return fallback
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return fallback
    else:
        return fallback
    return number if math.isfinite(number) else fallback


def measured_quantity(
    quantity: Any,
    metadata: Mapping[str, Any] | None,
    measurement: QuotaMeasurement = "events",
) -> float:
    """Return the amount one event contributes to its quota.

    Token-measured events use ``metadata["tokens"]`` when it is a
    non-negative number.  Otherwise the raw quantity is used, and a missing
    or non-positive quantity counts as 1.
    """
    if measurement == "tokens" and metadata:
        tokens = normalize_number(metadata.get("tokens"), -1.0)
        if tokens >= 0:
            return tokens
    amount = normalize_number(quantity, 0.0)
    return amount if amount > 0 else 1.0
