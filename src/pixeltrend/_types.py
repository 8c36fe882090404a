"""Internal shared types for cross-boundary data contracts.

These types define the per-pixel input shapes passed between the batch
layer and the analysis components. They are internal (prefixed ``_``);
only ``Observation`` is re-exported from ``pixeltrend.__init__``.
"""

from __future__ import annotations

import math
import numbers
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

import numpy as np
import numpy.typing as npt
import pandas as pd

BandList = list[str]
"""Ordered list of band or index identifiers (e.g., ``['NDVI', 'swir2']``)."""

FractionalYear = float
"""Continuous time in years, e.g. ``2020.5`` is mid-2020."""

YearRange = tuple[float, float]
"""Half-open ``[start, end)`` interval in fractional years."""

_SECONDS_PER_DAY: float = 86400.0


def to_fractional_year(value: Any) -> FractionalYear:
    """Convert a timestamp to fractional years.

    Real numbers are taken to already be fractional years. Anything else
    is parsed with ``pandas.Timestamp`` (``datetime``, ``date``, ISO
    strings, ``numpy.datetime64``) and mapped to
    ``year + (day_of_year - 1 + fraction_of_day) / days_in_year``.

    Args:
        value: Fractional year or epoch-convertible timestamp.

    Returns:
        The timestamp in fractional years.

    Raises:
        ValueError: If *value* cannot be interpreted as a timestamp.

    Example:
        >>> to_fractional_year(2020.25)
        2020.25
        >>> to_fractional_year("2021-01-01")
        2021.0
    """
    if isinstance(value, bool):
        msg = f"Cannot interpret boolean {value!r} as a timestamp"
        raise ValueError(msg)
    if isinstance(value, numbers.Real):
        return float(value)
    ts = pd.Timestamp(value)
    if ts is pd.NaT:
        msg = f"Cannot interpret {value!r} as a timestamp"
        raise ValueError(msg)
    days_in_year = 366 if ts.is_leap_year else 365
    seconds = ts.hour * 3600 + ts.minute * 60 + ts.second + ts.microsecond / 1e6
    day_fraction = seconds / _SECONDS_PER_DAY
    return ts.year + (ts.dayofyear - 1 + day_fraction) / days_in_year


def _as_float(value: Any) -> float:
    """Return *value* as a float, mapping ``None`` to NaN."""
    if value is None:
        return math.nan
    return float(value)


@dataclass(frozen=True)
class Observation:
    """A single time-stamped sample of one pixel.

    Args:
        timestamp: Fractional year or epoch-convertible timestamp.
        bands: Band name to value. ``None`` or NaN marks a missing value.

    Example:
        >>> obs = Observation(timestamp="2020-07-01", bands={"NDVI": 0.61})
        >>> round(obs.time, 3)
        2020.497
        >>> obs.value("swir2")
        nan
    """

    timestamp: Any
    bands: Mapping[str, float | None] = field(default_factory=dict)

    @property
    def time(self) -> FractionalYear:
        """Timestamp in fractional years."""
        return to_fractional_year(self.timestamp)

    def value(self, band: str) -> float:
        """Return the value for *band*, NaN if absent or missing."""
        return _as_float(self.bands.get(band))


def band_names(observations: Iterable[Observation]) -> BandList:
    """Return every band present in *observations*, in first-seen order."""
    names: dict[str, None] = {}
    for obs in observations:
        for name in obs.bands:
            names.setdefault(name, None)
    return list(names)


def observation_arrays(
    observations: Sequence[Observation],
    bands: Sequence[str],
) -> tuple[npt.NDArray[np.float64], npt.NDArray[np.float64]]:
    """Stack observations into a time vector and a value matrix.

    Args:
        observations: Ordered per-pixel observations.
        bands: Bands to extract, defining the matrix column order.

    Returns:
        ``(times, values)`` where ``times`` has shape ``(n,)`` in
        fractional years and ``values`` has shape ``(n, len(bands))`` with
        NaN for missing samples.
    """
    times = np.array([obs.time for obs in observations], dtype=np.float64)
    values = np.array(
        [[obs.value(b) for b in bands] for obs in observations],
        dtype=np.float64,
    ).reshape(len(observations), len(bands))
    return times, values
