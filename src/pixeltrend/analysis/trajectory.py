"""Loss and gain detection over piecewise-linear trajectories.

A temporal segmentation (e.g. LandTrendr) summarizes a pixel's annual
history as a handful of vertices joined by straight lines. Each line is a
candidate change event: a loss if the band moved against its improvement
direction, a gain otherwise. Events are filtered with a permissive
magnitude-or-slope policy, then ranked by a named selection rule.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping, Sequence

import numpy as np
import pandas as pd

from pixeltrend.config import SELECTION_RULES, ChangeConfig
from pixeltrend.exceptions import ConfigurationError
from pixeltrend.models import ChangeEvent, Trajectory
from pixeltrend.results import LossGainResult

logger = logging.getLogger(__name__)

# Primary sort key per rule, ascending. Ties fall back to end year
# descending, then input order.
_RULE_KEYS: Mapping[str, Callable[[ChangeEvent], float]] = {
    "newest": lambda e: -e.end_year,
    "oldest": lambda e: e.start_year,
    "largest": lambda e: -abs(e.magnitude),
    "smallest": lambda e: abs(e.magnitude),
    "steepest": lambda e: -abs(e.slope),
    "mostGradual": lambda e: abs(e.slope),
    "shortest": lambda e: e.duration,
    "longest": lambda e: -e.duration,
}


def _check_direction(improvement_direction: int) -> None:
    if improvement_direction not in (1, -1):
        raise ConfigurationError(
            what=f"Invalid improvement direction {improvement_direction}",
            cause="Improvement direction must be +1 or -1",
            fix="Use +1 for bands that increase with vegetation, -1 otherwise",
        )


def _check_rule(rule: str) -> Callable[[ChangeEvent], float]:
    try:
        return _RULE_KEYS[rule]
    except KeyError:
        raise ConfigurationError(
            what=f"Unknown selection rule {rule!r}",
            fix=f"Choose one of {', '.join(SELECTION_RULES)}",
        ) from None


def extract_events(
    trajectory: Trajectory,
    improvement_direction: int,
) -> list[ChangeEvent]:
    """Turn each trajectory segment into a candidate change event.

    Args:
        trajectory: Fitted vertices of one pixel.
        improvement_direction: ``+1`` if increasing values mean
            improvement (e.g. NDVI), ``-1`` otherwise.

    Returns:
        Events in chronological order. Flat segments produce no event.

    Raises:
        ConfigurationError: If *improvement_direction* is not +1 or -1.

    Example:
        >>> traj = Trajectory.from_pairs([(2000, 0.5), (2005, 0.2)])
        >>> [e.direction for e in extract_events(traj, 1)]
        ['loss']
    """
    _check_direction(improvement_direction)
    events: list[ChangeEvent] = []
    for start, end in trajectory.pairs():
        magnitude = (end.fitted_value - start.fitted_value) * improvement_direction
        if magnitude == 0:
            continue
        events.append(
            ChangeEvent(
                direction="loss" if magnitude < 0 else "gain",
                start_year=start.year,
                end_year=end.year,
                start_value=start.fitted_value,
                end_value=end.fitted_value,
                magnitude=magnitude,
            )
        )
    return events


def _retained(event: ChangeEvent, mag_thresh: float, slope_thresh: float) -> bool:
    """An event survives unless it fails both the magnitude and slope bars."""
    fails_magnitude = abs(event.magnitude) < abs(mag_thresh)
    fails_slope = abs(event.slope) < abs(slope_thresh)
    return not (fails_magnitude and fails_slope)


def filter_and_rank(
    events: Iterable[ChangeEvent],
    mag_thresh: float,
    slope_thresh: float,
    duration_thresh: float,
    gain_mag_thresh: float | None = None,
    gain_slope_thresh: float | None = None,
    loss_rule: str | None = None,
    gain_rule: str | None = None,
) -> dict[str, list[ChangeEvent]]:
    """Split events by direction and drop the ones below both bars.

    An event is kept if ``|magnitude| >= |mag_thresh|`` or
    ``|slope| >= |slope_thresh|``. Kept losses are tagged ``"slow"`` when
    ``duration >= duration_thresh``, else ``"fast"``; the duration never
    removes an event.

    Args:
        events: Candidate events.
        mag_thresh: Magnitude bar (sign ignored).
        slope_thresh: Slope bar (sign ignored).
        duration_thresh: Slow/fast loss boundary in years.
        gain_mag_thresh: Magnitude bar for gains. Defaults to *mag_thresh*.
        gain_slope_thresh: Slope bar for gains. Defaults to *slope_thresh*.
        loss_rule: Optional selection rule to order losses by.
        gain_rule: Optional selection rule to order gains by.

    Returns:
        ``{"loss": [...], "gain": [...]}``, each in input order unless a
        rule is given.
    """
    if gain_mag_thresh is None:
        gain_mag_thresh = mag_thresh
    if gain_slope_thresh is None:
        gain_slope_thresh = slope_thresh

    kept: dict[str, list[ChangeEvent]] = {"loss": [], "gain": []}
    for event in events:
        if event.direction == "loss":
            if _retained(event, mag_thresh, slope_thresh):
                pace = "slow" if event.duration >= duration_thresh else "fast"
                kept["loss"].append(event.with_pace(pace))
        elif _retained(event, gain_mag_thresh, gain_slope_thresh):
            kept["gain"].append(event)

    if loss_rule is not None:
        kept["loss"] = _sorted(kept["loss"], loss_rule)
    if gain_rule is not None:
        kept["gain"] = _sorted(kept["gain"], gain_rule)
    return kept


def _sorted(events: Sequence[ChangeEvent], rule: str) -> list[ChangeEvent]:
    key = _check_rule(rule)
    return sorted(events, key=lambda e: (key(e), -e.end_year))


def select_top_k(
    events: Sequence[ChangeEvent],
    rule: str,
    k: int,
) -> list[ChangeEvent]:
    """Pick up to *k* events by a named rule.

    Rules: ``newest`` (end year, descending), ``oldest`` (start year),
    ``largest`` / ``smallest`` (absolute magnitude), ``steepest`` /
    ``mostGradual`` (absolute slope), ``shortest`` / ``longest``
    (duration). Ties are broken by end year descending, then input order.

    Args:
        events: Candidate events.
        rule: Selection rule name.
        k: Maximum number of events to return (at least 1).

    Returns:
        At most *k* events. Fewer is not an error.

    Raises:
        ConfigurationError: If *rule* is unknown or *k* is below 1.
    """
    if k < 1:
        raise ConfigurationError(
            what=f"Invalid number of events to pull: {k}",
            fix="Pull at least 1 event",
        )
    return _sorted(events, rule)[:k]


def convert_to_loss_gain(
    trajectory: Trajectory,
    config: ChangeConfig,
    improvement_direction: int,
) -> LossGainResult:
    """Run extraction, filtering and selection for one pixel.

    Args:
        trajectory: Fitted vertices of one pixel.
        config: Thresholds and selection rules.
        improvement_direction: ``+1`` or ``-1`` for the trajectory's band.

    Returns:
        ``LossGainResult`` with up to ``config.how_many_to_pull`` events per
        direction.
    """
    events = extract_events(trajectory, improvement_direction)
    kept = filter_and_rank(
        events,
        config.loss_mag_thresh,
        config.loss_slope_thresh,
        config.slow_loss_duration_thresh,
        gain_mag_thresh=config.gain_mag_thresh,
        gain_slope_thresh=config.gain_slope_thresh,
    )
    k = config.how_many_to_pull
    return LossGainResult(
        loss=select_top_k(kept["loss"], config.choose_which_loss, k),
        gain=select_top_k(kept["gain"], config.choose_which_gain, k),
        how_many=k,
    )


def annual_fit(
    trajectory: Trajectory,
    start_year: int,
    end_year: int,
) -> pd.DataFrame:
    """Expand a trajectory into one row per year.

    Columns:
        ``fitted``: piecewise-linear value at the year.
        ``magnitude``, ``duration``, ``slope``: of the segment containing
        the year (raw, not direction-adjusted). A vertex year belongs to
        the segment it starts, the last vertex to the last segment.
        ``diff``: change of ``fitted`` since the previous year.

    Years outside the vertex span are NaN.

    Args:
        trajectory: Fitted vertices of one pixel.
        start_year: First year of output.
        end_year: Last year of output (inclusive).

    Returns:
        DataFrame indexed by ``year``.
    """
    years = np.arange(start_year, end_year + 1)
    vertex_years = np.array(trajectory.years, dtype=np.float64)
    vertex_values = np.array(trajectory.values, dtype=np.float64)
    inside = (years >= vertex_years[0]) & (years <= vertex_years[-1])

    fitted = np.where(
        inside, np.interp(years, vertex_years, vertex_values), np.nan
    )

    seg_index = np.clip(
        np.searchsorted(vertex_years, years, side="right") - 1,
        0,
        len(vertex_years) - 2,
    )
    seg_duration = np.diff(vertex_years)
    seg_magnitude = np.diff(vertex_values)

    frame = pd.DataFrame(
        {
            "fitted": fitted,
            "magnitude": np.where(inside, seg_magnitude[seg_index], np.nan),
            "duration": np.where(inside, seg_duration[seg_index], np.nan),
            "slope": np.where(
                inside, seg_magnitude[seg_index] / seg_duration[seg_index], np.nan
            ),
        },
        index=pd.Index(years, name="year"),
    )
    frame["diff"] = frame["fitted"].diff()
    return frame
