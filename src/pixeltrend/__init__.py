"""pixeltrend: per-pixel temporal models for satellite time series.

Three components share one data model:

* harmonic regression with seasonality metrics,
* prediction from segmented harmonic models with two-run feathering,
* loss/gain event selection over piecewise-linear trajectories.

Example:
    >>> import pixeltrend as pt
    >>>
    >>> obs = [pt.Observation(2020 + i / 24, {"NDVI": 0.5}) for i in range(24)]
    >>> fit = pt.fit(obs, frequencies=[1, 2], detrend=False)
    >>> round(pt.predict(fit["NDVI"], "2020-06-01"), 3)
    0.5
"""

from pixeltrend.__about__ import __version__
from pixeltrend._batch import (
    fit_harmonic_cube,
    loss_gain_cube,
    predict_segmented_cube,
    segment_breaks_cube,
)
from pixeltrend._types import Observation, to_fractional_year
from pixeltrend.analysis.harmonic import (
    HarmonicFit,
    derive_phase_amplitude_peak,
    fit,
    fit_moving_windows,
    predict,
    predict_many,
    synthesize_at_peak,
)
from pixeltrend.analysis.segmented import (
    detect_segment_breaks,
    predict_feathered,
    predict_segmented,
    predict_series,
    select_active_model,
    select_active_segment,
    time_steps,
)
from pixeltrend.analysis.trajectory import (
    annual_fit,
    convert_to_loss_gain,
    extract_events,
    filter_and_rank,
    select_top_k,
)
from pixeltrend.config import (
    BandSpec,
    ChangeConfig,
    Config,
    HarmonicConfig,
    PredictionConfig,
    load_config,
    resolve_bands,
)
from pixeltrend.exceptions import (
    ConfigurationError,
    InsufficientDataError,
    InvalidFeatherWindowError,
    PixelError,
    PixelTrendError,
    SingularFitError,
    UnsupportedFrequencyError,
)
from pixeltrend.models import (
    ChangeEvent,
    DerivedSeasonality,
    HarmonicModel,
    Segment,
    SegmentSet,
    Trajectory,
    Vertex,
)
from pixeltrend.results import BreakEvent, BreakSummary, LossGainResult

__all__ = [
    # Version
    "__version__",
    # Data model
    "ChangeEvent",
    "DerivedSeasonality",
    "HarmonicModel",
    "Observation",
    "Segment",
    "SegmentSet",
    "Trajectory",
    "Vertex",
    "to_fractional_year",
    # Harmonic regression
    "HarmonicFit",
    "derive_phase_amplitude_peak",
    "fit",
    "fit_moving_windows",
    "predict",
    "predict_many",
    "synthesize_at_peak",
    # Segmented prediction
    "detect_segment_breaks",
    "predict_feathered",
    "predict_segmented",
    "predict_series",
    "select_active_model",
    "select_active_segment",
    "time_steps",
    # Trajectory change detection
    "annual_fit",
    "convert_to_loss_gain",
    "extract_events",
    "filter_and_rank",
    "select_top_k",
    # Raster batches
    "fit_harmonic_cube",
    "loss_gain_cube",
    "predict_segmented_cube",
    "segment_breaks_cube",
    # Configuration
    "BandSpec",
    "ChangeConfig",
    "Config",
    "HarmonicConfig",
    "PredictionConfig",
    "load_config",
    "resolve_bands",
    # Results
    "BreakEvent",
    "BreakSummary",
    "LossGainResult",
    # Exceptions
    "ConfigurationError",
    "InsufficientDataError",
    "InvalidFeatherWindowError",
    "PixelError",
    "PixelTrendError",
    "SingularFitError",
    "UnsupportedFrequencyError",
]
