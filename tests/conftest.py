"""Shared test fixtures for the pixeltrend test suite."""

from __future__ import annotations

import math
from collections.abc import Callable

import numpy as np
import pytest

from pixeltrend import Observation, Segment, SegmentSet, Trajectory
from pixeltrend.config import ChangeConfig

# Known coefficients for a noise-free two-band series, frequencies (1, 2).
NDVI_COEFS = {
    "intercept": 0.45,
    "slope": 0.01,
    "cos_1": 0.12,
    "sin_1": -0.05,
    "cos_2": 0.03,
    "sin_2": 0.02,
}
SWIR2_COEFS = {
    "intercept": 0.20,
    "slope": -0.004,
    "cos_1": -0.06,
    "sin_1": 0.01,
    "cos_2": 0.00,
    "sin_2": 0.015,
}


def harmonic_value(coefs: dict[str, float], t: float, origin: float) -> float:
    """Evaluate a (1, 2)-frequency detrended harmonic by hand."""
    return (
        coefs["intercept"]
        + coefs["slope"] * (t - origin)
        + coefs["cos_1"] * math.cos(2 * math.pi * t)
        + coefs["sin_1"] * math.sin(2 * math.pi * t)
        + coefs["cos_2"] * math.cos(4 * math.pi * t)
        + coefs["sin_2"] * math.sin(4 * math.pi * t)
    )


@pytest.fixture
def clean_observations() -> list[Observation]:
    """Noise-free 16-day observations over 2015-2018."""
    times = 2015.0 + np.arange(0, 4 * 365, 16) / 365.0
    origin = float(times[0])
    return [
        Observation(
            float(t),
            {
                "NDVI": harmonic_value(NDVI_COEFS, float(t), origin),
                "swir2": harmonic_value(SWIR2_COEFS, float(t), origin),
            },
        )
        for t in times
    ]


def flat_segment(start: float, end: float, level: float, **kwargs: object) -> Segment:
    """Segment whose NDVI model is the constant *level*."""
    return Segment.from_coefficients(
        start,
        end,
        {"NDVI": {"intercept": level, "cos_1": 0.0, "sin_1": 0.0}},
        frequencies=[1],
        detrend=False,
        **kwargs,
    )


@pytest.fixture
def gapped_segments() -> SegmentSet:
    """Two flat segments with a gap in 2005-2006 and a trailing break."""
    return SegmentSet(
        segments=(
            flat_segment(2000.0, 2005.0, 0.6),
            flat_segment(2006.0, 2010.0, 0.3, break_date=2012.0),
        ),
        provenance="early",
    )


@pytest.fixture
def early_run() -> SegmentSet:
    return SegmentSet(segments=(flat_segment(1984.0, 2022.0, 0.2),), provenance="early")


@pytest.fixture
def late_run() -> SegmentSet:
    return SegmentSet(segments=(flat_segment(2010.0, 2024.0, 0.8),), provenance="late")


@pytest.fixture
def worked_trajectory() -> Trajectory:
    """Flat, then a five-year decline, then a recovery."""
    return Trajectory.from_pairs([(2000, 0.5), (2005, 0.5), (2010, 0.2), (2015, 0.6)])


@pytest.fixture
def change_config() -> ChangeConfig:
    return ChangeConfig(
        loss_mag_thresh=-0.1,
        loss_slope_thresh=-0.05,
        gain_mag_thresh=0.1,
        gain_slope_thresh=0.05,
        slow_loss_duration_thresh=3,
        choose_which_loss="largest",
        choose_which_gain="largest",
        how_many_to_pull=1,
    )


@pytest.fixture
def true_coefficients() -> dict[str, dict[str, float]]:
    """Coefficients behind ``clean_observations``, keyed by band."""
    return {"NDVI": dict(NDVI_COEFS), "swir2": dict(SWIR2_COEFS)}


@pytest.fixture
def make_segment() -> Callable[..., Segment]:
    """Factory for constant-valued NDVI segments."""
    return flat_segment
