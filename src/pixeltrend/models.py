"""Per-pixel data model shared by the analysis components.

All entities are frozen dataclasses built fresh per pixel from immutable
inputs. Numeric payloads are plain floats so every record flattens to a
mapping suitable for raster encoding by the caller.
"""

from __future__ import annotations

import bisect
import math
from collections.abc import Iterable, Iterator, Mapping, Sequence
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any, Literal

import numpy as np
import numpy.typing as npt

from pixeltrend._types import YearRange

Direction = Literal["loss", "gain"]
Pace = Literal["slow", "fast"]


def coefficient_names(frequencies: Sequence[int], detrend: bool) -> list[str]:
    """Return canonical coefficient names in design-matrix column order.

    Example:
        >>> coefficient_names([1, 2], detrend=True)
        ['intercept', 'slope', 'cos_1', 'sin_1', 'cos_2', 'sin_2']
    """
    names = ["intercept"]
    if detrend:
        names.append("slope")
    for k in frequencies:
        names.extend([f"cos_{k}", f"sin_{k}"])
    return names


def merge_ranges(ranges: Iterable[YearRange]) -> tuple[YearRange, ...]:
    """Merge half-open ``[start, end)`` ranges into disjoint sorted ones.

    Touching ranges are joined.

    Example:
        >>> merge_ranges([(2010.0, 2020.0), (1990.0, 2000.0), (2000.0, 2005.0)])
        ((1990.0, 2005.0), (2010.0, 2020.0))
    """
    merged: list[YearRange] = []
    for start, end in sorted(ranges):
        if merged and start <= merged[-1][1]:
            merged[-1] = (merged[-1][0], max(merged[-1][1], end))
        else:
            merged.append((start, end))
    return tuple(merged)


# ── Harmonic models ────────────────────────────────────────────────


@dataclass(frozen=True)
class HarmonicModel:
    """Fitted harmonic regression model for one band.

    ``value(t) = intercept + slope * (t - origin)
    + sum_k cos_k * cos(2 pi k t) + sin_k * sin(2 pi k t)``
    with ``t`` in fractional years and ``k`` in cycles per year. The slope
    term only exists when ``detrend`` is set.

    Attributes:
        band: Band the model was fit to.
        frequencies: Harmonic frequencies in cycles per year.
        coefficients: Coefficient name to value (see ``coefficient_names``).
        detrend: Whether the model carries a linear trend term.
        origin: Time the trend term is measured from.
        validity: Optional half-open ``[start, end)`` validity interval.
        rmse: Root-mean-square residual of the fit (NaN if unknown).
    """

    band: str
    frequencies: tuple[int, ...]
    coefficients: Mapping[str, float]
    detrend: bool = False
    origin: float = 0.0
    validity: YearRange | None = None
    rmse: float = math.nan

    def __post_init__(self) -> None:
        expected = coefficient_names(self.frequencies, self.detrend)
        if set(self.coefficients) != set(expected):
            msg = (
                f"coefficients for band {self.band!r} must be exactly "
                f"{expected}, got {sorted(self.coefficients)}"
            )
            raise ValueError(msg)
        frozen = MappingProxyType({k: float(self.coefficients[k]) for k in expected})
        object.__setattr__(self, "frequencies", tuple(self.frequencies))
        object.__setattr__(self, "coefficients", frozen)

    @classmethod
    def from_vector(
        cls,
        band: str,
        frequencies: Sequence[int],
        detrend: bool,
        vector: Sequence[float] | npt.NDArray[np.floating[Any]],
        **kwargs: Any,
    ) -> HarmonicModel:
        """Build a model from a coefficient vector in canonical order."""
        names = coefficient_names(frequencies, detrend)
        if len(vector) != len(names):
            msg = f"expected {len(names)} coefficients, got {len(vector)}"
            raise ValueError(msg)
        return cls(
            band=band,
            frequencies=tuple(frequencies),
            coefficients=dict(zip(names, (float(v) for v in vector))),
            detrend=detrend,
            **kwargs,
        )

    @property
    def n_coefficients(self) -> int:
        return len(self.coefficients)

    def vector(self) -> npt.NDArray[np.float64]:
        """Coefficients as an array in canonical order."""
        return np.array(list(self.coefficients.values()), dtype=np.float64)

    def covers(self, t: float) -> bool:
        """Whether *t* lies inside the validity interval (always, if unset)."""
        if self.validity is None:
            return True
        start, end = self.validity
        return start <= t < end

    def to_dict(self) -> dict[str, float]:
        """Flatten to ``{"<band>_<coefficient>": value}``."""
        return {f"{self.band}_{k}": v for k, v in self.coefficients.items()}


@dataclass(frozen=True)
class DerivedSeasonality:
    """Seasonality summary of the frequency-2 harmonic of one band.

    Attributes:
        band: Source band.
        amplitude: Non-negative amplitude of the frequency-2 term.
        phase: Phase as a fraction of the term's cycle, in ``[0, 1)``.
        peak_julian_day: First day of year (1-365) at which the term peaks.
        area_under_curve: Integral over one year of the non-negative part
            of the fitted curve.
    """

    band: str
    amplitude: float
    phase: float
    peak_julian_day: int
    area_under_curve: float

    def to_dict(self) -> dict[str, float]:
        """Flatten to band-prefixed keys."""
        return {
            f"{self.band}_amplitude": self.amplitude,
            f"{self.band}_phase": self.phase,
            f"{self.band}_peakJulianDay": float(self.peak_julian_day),
            f"{self.band}_AUC": self.area_under_curve,
        }


# ── Segmented models ───────────────────────────────────────────────


@dataclass(frozen=True)
class Segment:
    """A time-bounded set of per-band harmonic models.

    Mirrors one record of a temporal segmentation run: the segment is
    valid on ``[start, end)``; ``break_date`` is the date the change that
    ended it was detected (``None`` when the segment ended without one).

    Attributes:
        start: Segment start in fractional years.
        end: Segment end in fractional years.
        models: Band name to ``HarmonicModel``.
        break_date: Date of the terminating break, if any.
        change_probability: Probability attached to the break (0-1).
        magnitudes: Band name to break magnitude.
    """

    start: float
    end: float
    models: Mapping[str, HarmonicModel]
    break_date: float | None = None
    change_probability: float = 0.0
    magnitudes: Mapping[str, float] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.start < self.end:
            msg = f"segment start {self.start} must be before end {self.end}"
            raise ValueError(msg)
        object.__setattr__(self, "models", MappingProxyType(dict(self.models)))
        object.__setattr__(
            self,
            "magnitudes",
            MappingProxyType({k: float(v) for k, v in self.magnitudes.items()}),
        )

    @classmethod
    def from_coefficients(
        cls,
        start: float,
        end: float,
        coefficients: Mapping[str, Mapping[str, float]],
        frequencies: Sequence[int],
        detrend: bool = True,
        origin: float = 0.0,
        **kwargs: Any,
    ) -> Segment:
        """Build a segment from per-band coefficient mappings.

        Example:
            >>> seg = Segment.from_coefficients(
            ...     2000.0, 2005.0,
            ...     {"NDVI": {"intercept": 0.5, "cos_1": 0.1, "sin_1": 0.0}},
            ...     frequencies=[1], detrend=False,
            ... )
            >>> seg.bands
            ('NDVI',)
        """
        models = {
            band: HarmonicModel(
                band=band,
                frequencies=tuple(frequencies),
                coefficients=coefs,
                detrend=detrend,
                origin=origin,
                validity=(start, end),
            )
            for band, coefs in coefficients.items()
        }
        return cls(start=start, end=end, models=models, **kwargs)

    @property
    def bands(self) -> tuple[str, ...]:
        return tuple(self.models)

    def covers(self, t: float) -> bool:
        return self.start <= t < self.end


@dataclass(frozen=True)
class SegmentSet:
    """Segments of one segmentation run, sorted by start.

    Attributes:
        segments: The run's segments. Sorted by start on construction.
        provenance: Identifier of the run (e.g. ``"early"``).
    """

    segments: tuple[Segment, ...]
    provenance: str = ""
    _starts: tuple[float, ...] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        ordered = tuple(sorted(self.segments, key=lambda s: s.start))
        object.__setattr__(self, "segments", ordered)
        object.__setattr__(self, "_starts", tuple(s.start for s in ordered))

    def __len__(self) -> int:
        return len(self.segments)

    def __iter__(self) -> Iterator[Segment]:
        return iter(self.segments)

    @property
    def coverage(self) -> tuple[YearRange, ...]:
        """Merged ``[start, end)`` intervals covered by the segments.

        Example:
            >>> SegmentSet(segments=()).coverage
            ()
        """
        return merge_ranges((s.start, s.end) for s in self.segments)

    def index_at_or_before(self, t: float) -> int:
        """Index of the last segment starting at or before *t* (-1 if none)."""
        return bisect.bisect_right(self._starts, t) - 1


# ── Trajectories and change events ─────────────────────────────────


@dataclass(frozen=True)
class Vertex:
    """One vertex of a piecewise-linear trajectory."""

    year: int
    fitted_value: float


@dataclass(frozen=True)
class Trajectory:
    """Piecewise-linear fitted trajectory of one pixel.

    Attributes:
        vertices: At least two vertices with strictly increasing years.
    """

    vertices: tuple[Vertex, ...]

    def __post_init__(self) -> None:
        vertices = tuple(self.vertices)
        if len(vertices) < 2:
            msg = f"trajectory needs at least 2 vertices, got {len(vertices)}"
            raise ValueError(msg)
        for a, b in zip(vertices, vertices[1:]):
            if not a.year < b.year:
                msg = f"vertex years must strictly increase, got {a.year} then {b.year}"
                raise ValueError(msg)
        object.__setattr__(self, "vertices", vertices)

    @classmethod
    def from_pairs(cls, pairs: Sequence[tuple[int, float]]) -> Trajectory:
        """Build from ``(year, fitted_value)`` pairs.

        Example:
            >>> Trajectory.from_pairs([(2000, 0.5), (2005, 0.2)]).years
            (2000, 2005)
        """
        return cls(tuple(Vertex(int(y), float(v)) for y, v in pairs))

    @classmethod
    def from_arrays(
        cls,
        years: Sequence[float] | npt.NDArray[Any],
        values: Sequence[float] | npt.NDArray[Any],
        is_vertex: Sequence[bool] | npt.NDArray[np.bool_] | None = None,
    ) -> Trajectory:
        """Build from parallel arrays, keeping only flagged vertices.

        Segmentation outputs typically store one row per year with a
        vertex flag; rows with a false flag or a NaN value are dropped.
        """
        years_arr = np.asarray(years, dtype=np.float64)
        values_arr = np.asarray(values, dtype=np.float64)
        keep = np.isfinite(years_arr) & np.isfinite(values_arr)
        if is_vertex is not None:
            keep &= np.asarray(is_vertex, dtype=bool)
        return cls.from_pairs(
            [(int(y), float(v)) for y, v in zip(years_arr[keep], values_arr[keep])]
        )

    @property
    def years(self) -> tuple[int, ...]:
        return tuple(v.year for v in self.vertices)

    @property
    def values(self) -> tuple[float, ...]:
        return tuple(v.fitted_value for v in self.vertices)

    def pairs(self) -> Iterator[tuple[Vertex, Vertex]]:
        """Consecutive vertex pairs, one per linear segment."""
        return zip(self.vertices, self.vertices[1:])

    def scaled(self, factor: float) -> Trajectory:
        """Return a copy with every fitted value multiplied by *factor*."""
        return Trajectory(
            tuple(Vertex(v.year, v.fitted_value * factor) for v in self.vertices)
        )


@dataclass(frozen=True)
class ChangeEvent:
    """A loss or gain derived from one trajectory segment.

    ``magnitude`` is sign-adjusted by the band's improvement direction,
    so losses are negative and gains positive regardless of band.

    Attributes:
        direction: ``"loss"`` or ``"gain"``.
        start_year: Year of the segment's first vertex.
        end_year: Year of the segment's last vertex.
        start_value: Fitted value at ``start_year``.
        end_value: Fitted value at ``end_year``.
        magnitude: Sign-adjusted change over the segment.
        pace: ``"slow"`` or ``"fast"`` for retained losses, else ``None``.
    """

    direction: Direction
    start_year: int
    end_year: int
    start_value: float
    end_value: float
    magnitude: float
    pace: Pace | None = None

    @property
    def duration(self) -> int:
        return self.end_year - self.start_year

    @property
    def slope(self) -> float:
        return self.magnitude / self.duration

    def with_pace(self, pace: Pace | None) -> ChangeEvent:
        return replace(self, pace=pace)

    def to_dict(self) -> dict[str, Any]:
        return {
            "direction": self.direction,
            "start_year": self.start_year,
            "end_year": self.end_year,
            "duration": self.duration,
            "magnitude": self.magnitude,
            "slope": self.slope,
            "pace": self.pace,
        }
