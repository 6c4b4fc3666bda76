"""
Fee rate selection from Esplora fee-estimate tables.

/fee-estimates returns a JSON object mapping confirmation targets (string
integer keys, in blocks) to fee rates in sat/vB. Not every target has a
bucket, so a rate for an arbitrary target is inherited from the nearest
slower bucket: a transaction willing to wait N blocks can also use the rate
of any higher target with a known estimate.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from loguru import logger

from escore.errors import MalformedResponseError, NoFeeEstimateAvailableError


@dataclass(frozen=True, order=True)
class FeeRate:
    """Fee rate in satoshis per virtual byte (fractional)."""

    sat_per_vb: float

    @classmethod
    def from_sat_per_kwu(cls, sat_per_kwu: float) -> FeeRate:
        return cls(sat_per_kwu / 250.0)

    @property
    def sat_per_kwu(self) -> float:
        return self.sat_per_vb * 250.0

    def fee_for_vsize(self, vsize: int) -> int:
        """Absolute fee in sats for a transaction of the given virtual size."""
        return math.ceil(self.sat_per_vb * vsize)

    def __str__(self) -> str:
        return f"{self.sat_per_vb:.3f} sat/vB"


def parse_fee_estimates(data: Any) -> dict[int, float]:
    """
    Convert a decoded /fee-estimates object into a {target: rate} table.

    Raises:
        MalformedResponseError: If the object is not a mapping of integer
            targets to non-negative numbers
    """
    if not isinstance(data, Mapping):
        raise MalformedResponseError(f"Fee estimates must be an object, got {type(data).__name__}")

    table: dict[int, float] = {}
    for key, value in data.items():
        try:
            target = int(key)
        except (TypeError, ValueError) as e:
            raise MalformedResponseError(f"Invalid fee estimate target: {key!r}") from e
        if target < 1:
            raise MalformedResponseError(f"Fee estimate target must be positive: {key!r}")

        # bool is an int subclass, reject it explicitly
        if isinstance(value, bool) or not isinstance(value, int | float):
            raise MalformedResponseError(f"Invalid fee rate for target {target}: {value!r}")
        rate = float(value)
        if not math.isfinite(rate) or rate < 0:
            raise MalformedResponseError(f"Invalid fee rate for target {target}: {value!r}")

        table[target] = rate

    return table


def fee_rate_for_target(table: Mapping[int, float], target: int) -> FeeRate:
    """
    Fee rate for a confirmation target.

    Returns the rate stored at target when present. Otherwise scans
    target+1, target+2, ... up to the highest known target and returns the
    rate of the first present key. Selection is by target, never by rate.

    Args:
        table: Mapping of confirmation target (blocks) to sat/vB
        target: Desired confirmation target in blocks (>= 1)

    Raises:
        ValueError: If target is not positive
        NoFeeEstimateAvailableError: If no known target is >= target
    """
    if target < 1:
        raise ValueError(f"Confirmation target must be positive, got {target}")

    if target in table:
        return FeeRate(table[target])

    if not table:
        raise NoFeeEstimateAvailableError(target)

    max_target = max(table)
    for candidate in range(target + 1, max_target + 1):
        if candidate in table:
            logger.debug(f"No fee bucket for target {target}, inheriting from target {candidate}")
            return FeeRate(table[candidate])

    raise NoFeeEstimateAvailableError(target, max_target)
