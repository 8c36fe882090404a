"""Prediction from piecewise-segmented harmonic models.

A segmentation run (e.g. CCDC) splits a pixel's history into segments,
each valid on ``[start, end)`` and carrying one harmonic model per band.
This module finds the segment active at a query date, evaluates it, and
cross-fades ("feathers") two independently fit runs over a transition
window so the combined series has no seam at a single cutover date.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Sequence
from typing import Any

import numpy as np
import pandas as pd

from pixeltrend._types import YearRange, to_fractional_year
from pixeltrend.analysis.harmonic import predict
from pixeltrend.exceptions import ConfigurationError, InvalidFeatherWindowError
from pixeltrend.models import HarmonicModel, Segment, SegmentSet, merge_ranges
from pixeltrend.results import BreakEvent, BreakSummary

logger = logging.getLogger(__name__)

_DAYS_PER_YEAR: int = 365
_JULIAN_EPSILON: float = 1e-9


# ── Segment selection ──────────────────────────────────────────────


def select_active_segment(
    segment_set: SegmentSet,
    query_date: Any,
    fill_gaps: bool,
) -> Segment | None:
    """Find the segment valid at *query_date*.

    Segments are located by binary search over their start dates. Where
    segments overlap, the latest-starting one that covers the date wins.

    With *fill_gaps*, a date that falls in a gap after a segment ends
    returns that preceding segment: up to the next segment's start for
    interior gaps, and up to the segment's own break date after the last
    segment.

    Args:
        segment_set: Segments of one run.
        query_date: Fractional year or epoch-convertible timestamp.
        fill_gaps: Whether to carry the preceding segment forward.

    Returns:
        The active ``Segment``, or ``None`` when no segment applies. A
        ``None`` result is a gap, not an error.
    """
    t = to_fractional_year(query_date)
    idx = segment_set.index_at_or_before(t)
    if idx < 0:
        return None

    segments = segment_set.segments
    for i in range(idx, -1, -1):
        if segments[i].covers(t):
            return segments[i]

    if not fill_gaps:
        return None

    preceding = max(segments[: idx + 1], key=lambda s: s.end)
    if idx + 1 < len(segments):
        return preceding
    if preceding.break_date is not None and t < preceding.break_date:
        return preceding
    return None


def select_active_model(
    segment_set: SegmentSet,
    band: str,
    query_date: Any,
    fill_gaps: bool,
) -> HarmonicModel | None:
    """Return *band*'s model in the segment active at *query_date*."""
    segment = select_active_segment(segment_set, query_date, fill_gaps)
    if segment is None:
        return None
    return segment.models.get(band)


def predict_segmented(
    segment_set: SegmentSet,
    band: str,
    query_date: Any,
    fill_gaps: bool,
) -> float:
    """Evaluate a single segmentation run at *query_date*.

    Returns:
        The predicted value, or NaN when no segment applies.
    """
    model = select_active_model(segment_set, band, query_date, fill_gaps)
    if model is None:
        return math.nan
    return predict(model, query_date)


# ── Feathering ─────────────────────────────────────────────────────


def validate_feather_window(
    segment_set_a: SegmentSet,
    segment_set_b: SegmentSet,
    feather_start: float,
    feather_end: float,
) -> None:
    """Check a feathering window before any per-pixel work.

    Raises:
        InvalidFeatherWindowError: If the bounds are inverted or either
            bound lies outside the union of both runs' coverage.
    """
    check_feather_window(
        feather_start,
        feather_end,
        segment_set_a.coverage + segment_set_b.coverage,
    )


def check_feather_window(
    feather_start: float,
    feather_end: float,
    coverages: Iterable[YearRange],
) -> None:
    """Check a feathering window against a collection of coverage ranges.

    The ranges are merged first. *feather_start* must fall in some
    ``[start, end)`` range and *feather_end*, an exclusive bound, in some
    ``(start, end]`` range. A bound inside a gap between ranges fails.

    Raises:
        InvalidFeatherWindowError: If the bounds are inverted or either
            bound lies outside the union of *coverages*.
    """
    if not feather_start < feather_end:
        raise InvalidFeatherWindowError(
            what=f"Invalid feathering window {feather_start}-{feather_end}",
            cause="Feather start is not before feather end",
            fix="Pass feather_start < feather_end",
        )
    union = merge_ranges(coverages)
    if not union:
        raise InvalidFeatherWindowError(
            what=f"Invalid feathering window {feather_start}-{feather_end}",
            cause="Neither segmentation run has any segments",
            fix="Pass non-empty segment sets",
        )
    start_covered = any(lo <= feather_start < hi for lo, hi in union)
    end_covered = any(lo < feather_end <= hi for lo, hi in union)
    if not (start_covered and end_covered):
        spans = ", ".join(f"{lo}-{hi}" for lo, hi in union)
        raise InvalidFeatherWindowError(
            what=f"Invalid feathering window {feather_start}-{feather_end}",
            cause=f"Window bound lies outside the runs' coverage ({spans})",
            fix="Choose a window whose bounds both fall inside a covered range",
        )


def predict_feathered(
    segment_set_a: SegmentSet,
    segment_set_b: SegmentSet,
    band: str,
    query_date: Any,
    feather_start: float,
    feather_end: float,
    fill_gaps: bool,
) -> float:
    """Evaluate two segmentation runs with a linear cross-fade.

    Before *feather_start* only run A is used, from *feather_end* on only
    run B. Inside the window the result is ``(1 - w) * A + w * B`` with
    ``w = (t - feather_start) / (feather_end - feather_start)``. If only
    one run has an active segment inside the window its value is used
    alone.

    Args:
        segment_set_a: Earlier run.
        segment_set_b: Later run.
        band: Band to predict.
        query_date: Fractional year or epoch-convertible timestamp.
        feather_start: Start of the cross-fade window.
        feather_end: End of the cross-fade window.
        fill_gaps: Whether to carry segments forward across gaps.

    Returns:
        The blended prediction, NaN when neither run applies.

    Raises:
        InvalidFeatherWindowError: If the window is invalid.
    """
    validate_feather_window(segment_set_a, segment_set_b, feather_start, feather_end)
    return blend(
        segment_set_a,
        segment_set_b,
        band,
        to_fractional_year(query_date),
        feather_start,
        feather_end,
        fill_gaps,
    )


def blend(
    segment_set_a: SegmentSet,
    segment_set_b: SegmentSet,
    band: str,
    t: float,
    feather_start: float,
    feather_end: float,
    fill_gaps: bool,
) -> float:
    """Cross-fade two runs at *t* without validating the window.

    Batch callers validate the window once at setup and call this per
    pixel; see ``predict_feathered`` for the semantics.
    """
    if t < feather_start:
        return predict_segmented(segment_set_a, band, t, fill_gaps)
    if t >= feather_end:
        return predict_segmented(segment_set_b, band, t, fill_gaps)

    w = (t - feather_start) / (feather_end - feather_start)
    a = predict_segmented(segment_set_a, band, t, fill_gaps)
    b = predict_segmented(segment_set_b, band, t, fill_gaps)
    if math.isnan(a):
        return b
    if math.isnan(b):
        return a
    return (1.0 - w) * a + w * b


# ── Query dates and series ─────────────────────────────────────────


def _day_of_year(t: float) -> int:
    return int(math.floor((t - math.floor(t)) * _DAYS_PER_YEAR + _JULIAN_EPSILON)) + 1


def time_steps(
    start_year: int,
    end_year: int,
    start_julian: int,
    end_julian: int,
    step: float,
) -> list[float]:
    """Generate evenly stepped query dates restricted to a seasonal range.

    Dates start at ``start_year + (start_julian - 1) / 365`` and advance by
    *step* years. Only dates whose day of year falls in
    ``[start_julian, end_julian]`` are kept; when ``start_julian >
    end_julian`` the range wraps across the new year.

    Args:
        start_year: First calendar year.
        end_year: Last calendar year (inclusive).
        start_julian: First day of year kept (1-365).
        end_julian: Last day of year kept (1-365).
        step: Spacing in years, e.g. ``1`` for annual, ``0.1`` for dense.

    Returns:
        Ordered fractional-year dates.

    Raises:
        ConfigurationError: If the parameters are out of range.

    Example:
        >>> [round(t, 2) for t in time_steps(2000, 2002, 245, 245, 1)]
        [2000.67, 2001.67, 2002.67]
    """
    if step <= 0:
        raise ConfigurationError(
            what="Invalid time step",
            cause=f"step must be positive, got {step}",
            fix="Use 1 for annual or a fraction of a year for dense series",
        )
    for julian in (start_julian, end_julian):
        if not 1 <= julian <= _DAYS_PER_YEAR:
            raise ConfigurationError(
                what="Invalid julian day",
                cause=f"{julian} is outside 1-{_DAYS_PER_YEAR}",
                fix="Use julian days between 1 and 365",
            )
    if start_year > end_year:
        raise ConfigurationError(
            what="Invalid year range",
            cause=f"start_year {start_year} is after end_year {end_year}",
            fix="Swap the years",
        )

    base = start_year + (start_julian - 1) / _DAYS_PER_YEAR
    limit = end_year + 1.0
    count = int(math.floor((limit - base) / step - _JULIAN_EPSILON)) + 1
    wraps = start_julian > end_julian

    dates: list[float] = []
    for k in range(max(count, 0)):
        t = base + k * step
        if t >= limit:
            break
        doy = _day_of_year(t)
        keep = (
            doy >= start_julian or doy <= end_julian
            if wraps
            else start_julian <= doy <= end_julian
        )
        if keep:
            dates.append(t)
    return dates


def predict_series(
    early: SegmentSet,
    late: SegmentSet,
    band: str,
    dates: Iterable[Any],
    fill_gaps: bool,
    feather_start: float,
    feather_end: float,
) -> pd.DataFrame:
    """Predict early, late and feathered values over many dates.

    Returns:
        DataFrame indexed by fractional-year ``time`` with columns
        ``<band>_fitted_Early``, ``<band>_fitted_Late`` and
        ``<band>_fitted_Combined``.
    """
    validate_feather_window(early, late, feather_start, feather_end)
    times = [to_fractional_year(d) for d in dates]
    rows = {
        f"{band}_fitted_Early": [
            predict_segmented(early, band, t, fill_gaps) for t in times
        ],
        f"{band}_fitted_Late": [
            predict_segmented(late, band, t, fill_gaps) for t in times
        ],
        f"{band}_fitted_Combined": [
            blend(early, late, band, t, feather_start, feather_end, fill_gaps)
            for t in times
        ],
    }
    return pd.DataFrame(rows, index=pd.Index(np.asarray(times), name="time"))


# ── Break-based change detection ───────────────────────────────────


def detect_segment_breaks(
    segment_set: SegmentSet,
    band: str,
    improvement_direction: int,
    min_change_probability: float = 1.0,
) -> BreakSummary:
    """Extract the most recent and largest loss and gain breaks.

    Only segments that ended in a break with at least
    *min_change_probability* and that record a magnitude for *band* are
    considered. Magnitudes are multiplied by *improvement_direction* so
    losses are negative.

    Args:
        segment_set: Segments of one run.
        band: Band whose break magnitude is used.
        improvement_direction: ``+1`` or ``-1`` for *band*.
        min_change_probability: Minimum break probability.

    Returns:
        ``BreakSummary`` with up to one loss and one gain per method.
    """
    if improvement_direction not in (1, -1):
        raise ConfigurationError(
            what=f"Invalid improvement direction {improvement_direction}",
            cause="Improvement direction must be +1 or -1",
        )

    breaks: dict[str, list[BreakEvent]] = {"loss": [], "gain": []}
    for segment in segment_set:
        if segment.break_date is None:
            continue
        if segment.change_probability < min_change_probability:
            continue
        if band not in segment.magnitudes:
            continue
        magnitude = segment.magnitudes[band] * improvement_direction
        if magnitude < 0:
            breaks["loss"].append(BreakEvent(segment.break_date, magnitude))
        elif magnitude > 0:
            breaks["gain"].append(BreakEvent(segment.break_date, magnitude))

    summary = BreakSummary()
    for direction, events in breaks.items():
        if not events:
            continue
        summary.most_recent[direction] = max(events, key=lambda e: e.date)
        summary.highest_mag[direction] = max(
            events, key=lambda e: (abs(e.magnitude), e.date)
        )
    return summary


def breaks_for_bands(
    segment_set: SegmentSet,
    bands: Sequence[str],
    directions: dict[str, int],
    min_change_probability: float = 1.0,
) -> dict[str, float]:
    """Flatten ``detect_segment_breaks`` over several bands."""
    flat: dict[str, float] = {}
    for band in bands:
        summary = detect_segment_breaks(
            segment_set, band, directions[band], min_change_probability
        )
        flat.update(summary.to_flat(band))
    return flat
