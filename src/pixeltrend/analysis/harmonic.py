"""Harmonic regression and seasonality metrics.

Pure computation module: observations in, immutable ``HarmonicModel``
records out. Time is expressed in fractional years and harmonic
frequencies in cycles per year, so frequency ``k`` contributes
``cos(2 pi k t)`` and ``sin(2 pi k t)`` terms.

Example:
    >>> from pixeltrend import Observation
    >>> obs = [Observation(2020 + i / 12, {"NDVI": 0.5}) for i in range(12)]
    >>> result = fit(obs, frequencies=[1], detrend=False)
    >>> round(result["NDVI"].coefficients["intercept"], 3)
    0.5
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field, replace
from typing import Any

import numpy as np
import numpy.typing as npt
import pandas as pd
from pydantic import ValidationError

from pixeltrend._types import (
    Observation,
    band_names,
    observation_arrays,
    to_fractional_year,
)
from pixeltrend.config import HarmonicConfig
from pixeltrend.exceptions import (
    ConfigurationError,
    InsufficientDataError,
    PixelError,
    SingularFitError,
    UnsupportedFrequencyError,
)
from pixeltrend.models import DerivedSeasonality, HarmonicModel

logger = logging.getLogger(__name__)

_TWO_PI: float = 2.0 * math.pi
_DAYS_PER_YEAR: int = 365
_SEASONALITY_FREQUENCY: int = 2


@dataclass(frozen=True)
class HarmonicFit:
    """Result of fitting one pixel's observations.

    Attributes:
        models: Band name to fitted ``HarmonicModel``, in band order.
        fitted: Fitted value of every band at every observation time,
            one ``<band>_fitted`` column per band, indexed by time.
        failed: Band name to the reason it was not fit. Only filled when
            fitting with ``skip_failed``.
    """

    models: Mapping[str, HarmonicModel]
    fitted: pd.DataFrame
    failed: Mapping[str, str] = field(default_factory=dict)

    def __getitem__(self, band: str) -> HarmonicModel:
        return self.models[band]

    @property
    def bands(self) -> list[str]:
        return list(self.models)

    def to_dict(self) -> dict[str, float]:
        """Flatten every model's coefficients into one mapping."""
        flat: dict[str, float] = {}
        for model in self.models.values():
            flat.update(model.to_dict())
        return flat


def _checked_config(frequencies: Iterable[int], detrend: bool) -> HarmonicConfig:
    """Validate harmonic parameters, raising ``ConfigurationError``."""
    try:
        return HarmonicConfig(frequencies=tuple(frequencies), detrend=detrend)
    except ValidationError as exc:
        raise ConfigurationError(
            what="Invalid harmonic regression parameters",
            cause=str(exc),
            fix="Pass a non-empty list of distinct positive integer frequencies",
        ) from None


def design_matrix(
    times: npt.NDArray[np.floating[Any]],
    frequencies: Sequence[int],
    detrend: bool,
    origin: float = 0.0,
) -> npt.NDArray[np.float64]:
    """Build the harmonic regression design matrix.

    Columns follow ``coefficient_names(frequencies, detrend)``: a constant,
    optionally ``t - origin``, then a cosine and sine column per frequency.

    Args:
        times: Sample times in fractional years, shape ``(n,)``.
        frequencies: Harmonic frequencies in cycles per year.
        detrend: Whether to add the trend column.
        origin: Time the trend column is measured from.

    Returns:
        Array of shape ``(n, n_coefficients)``.
    """
    t = np.asarray(times, dtype=np.float64)
    columns = [np.ones_like(t)]
    if detrend:
        columns.append(t - origin)
    for k in frequencies:
        angle = _TWO_PI * k * t
        columns.append(np.cos(angle))
        columns.append(np.sin(angle))
    return np.column_stack(columns)


def _solve_group(
    x: npt.NDArray[np.float64],
    y: npt.NDArray[np.float64],
    names: list[str],
    n_unknowns: int,
) -> tuple[npt.NDArray[np.float64], npt.NDArray[np.float64]]:
    """Solve one shared-mask group, returning coefficients and RMSE per band.

    Raises:
        InsufficientDataError: If there are fewer samples than unknowns.
        SingularFitError: If the design matrix is rank deficient.
    """
    n_valid = x.shape[0]
    if n_valid < n_unknowns:
        raise InsufficientDataError(
            what=f"Cannot fit harmonic model for band(s) {names}",
            cause=f"{n_valid} valid observations for {n_unknowns} unknowns",
            fix="Widen the time window or reduce the number of frequencies",
        )
    rank = int(np.linalg.matrix_rank(x))
    if rank < n_unknowns:
        raise SingularFitError(
            what=f"Cannot fit harmonic model for band(s) {names}",
            cause=f"Design matrix rank {rank} < {n_unknowns} columns",
            fix="Provide observations at more distinct times",
        )
    coefs, _, _, _ = np.linalg.lstsq(x, y, rcond=None)
    residuals = x @ coefs - y
    rmse = np.sqrt(np.mean(residuals**2, axis=0))
    return coefs, rmse


def fit(
    observations: Iterable[Observation],
    frequencies: Iterable[int],
    detrend: bool,
    bands: Sequence[str] | None = None,
    skip_failed: bool = False,
) -> HarmonicFit:
    """Fit a harmonic regression model to each band of one pixel.

    Ordinary least squares over the non-missing samples of each band.
    Bands whose missing-value pattern is identical share one design matrix
    and are solved in a single ``lstsq`` call.

    By default a band that cannot be fit fails the whole call. With
    *skip_failed* such bands are left out of ``models``, their reason is
    recorded in ``failed`` and their fitted column is NaN; the call only
    raises when no band can be fit.

    Args:
        observations: Non-empty ordered observations of one pixel.
        frequencies: Harmonic frequencies in cycles per year.
        detrend: Whether to include a linear trend term. The trend is
            measured from the earliest observation time.
        bands: Bands to fit. Defaults to every band present.
        skip_failed: Keep the bands that fit when others do not.

    Returns:
        ``HarmonicFit`` with one model per fitted band and the fitted values.

    Raises:
        ConfigurationError: If *frequencies* is invalid.
        InsufficientDataError: If a band has fewer valid samples than
            unknowns.
        SingularFitError: If a band's design matrix is rank deficient.
    """
    config = _checked_config(frequencies, detrend)
    obs = list(observations)
    band_list = list(bands) if bands is not None else band_names(obs)
    n_unknowns = config.n_coefficients

    if not obs:
        raise InsufficientDataError(
            what="Cannot fit harmonic model",
            cause=f"No observations for {n_unknowns} unknowns",
        )

    times, values = observation_arrays(obs, band_list)
    origin = float(times.min()) if config.detrend else 0.0
    x_full = design_matrix(times, config.frequencies, config.detrend, origin)
    valid = np.isfinite(values)

    # Group bands by missing-value pattern so each group shares one solve.
    groups: dict[bytes, list[int]] = {}
    for j in range(len(band_list)):
        groups.setdefault(valid[:, j].tobytes(), []).append(j)

    solved: dict[int, tuple[npt.NDArray[np.float64], float]] = {}
    failed: dict[str, str] = {}
    last_error: PixelError | None = None
    for columns in groups.values():
        mask = valid[:, columns[0]]
        names = [band_list[j] for j in columns]
        try:
            coefs, rmse = _solve_group(
                x_full[mask], values[mask][:, columns], names, n_unknowns
            )
        except PixelError as exc:
            if not skip_failed:
                raise
            logger.debug("Band(s) %s not fit: %s", names, exc.cause)
            failed.update({name: exc.cause for name in names})
            last_error = exc
            continue
        for i, j in enumerate(columns):
            solved[j] = (coefs[:, i], float(rmse[i]))

    if last_error is not None and not solved:
        raise last_error

    models: dict[str, HarmonicModel] = {}
    fitted: dict[str, npt.NDArray[np.float64]] = {}
    for j, band in enumerate(band_list):
        if j not in solved:
            fitted[f"{band}_fitted"] = np.full(len(times), np.nan)
            continue
        vector, rmse_j = solved[j]
        models[band] = HarmonicModel.from_vector(
            band,
            config.frequencies,
            config.detrend,
            vector,
            origin=origin,
            rmse=rmse_j,
        )
        fitted[f"{band}_fitted"] = x_full @ vector

    frame = pd.DataFrame(fitted, index=pd.Index(times, name="time"))
    logger.debug(
        "Fit %d of %d band(s) over %d observations with frequencies %s",
        len(models),
        len(band_list),
        len(obs),
        list(config.frequencies),
    )
    return HarmonicFit(models=models, fitted=frame, failed=failed)


def predict(model: HarmonicModel, query_date: Any) -> float:
    """Evaluate *model* at one date.

    Extrapolation outside the fit period is allowed.

    Args:
        model: Fitted harmonic model.
        query_date: Fractional year or epoch-convertible timestamp.

    Returns:
        The predicted value.
    """
    t = to_fractional_year(query_date)
    return float(predict_many(model, [t])[0])


def predict_many(
    model: HarmonicModel,
    dates: Iterable[Any] | npt.NDArray[np.floating[Any]],
) -> npt.NDArray[np.float64]:
    """Evaluate *model* at many dates.

    Args:
        model: Fitted harmonic model.
        dates: Fractional years or epoch-convertible timestamps.

    Returns:
        Predicted values, one per date.
    """
    if isinstance(dates, np.ndarray) and np.issubdtype(dates.dtype, np.floating):
        times = dates.astype(np.float64)
    else:
        times = np.array([to_fractional_year(d) for d in dates], dtype=np.float64)
    x = design_matrix(times, model.frequencies, model.detrend, model.origin)
    result: npt.NDArray[np.float64] = x @ model.vector()
    return result


def validate_seasonality_request(frequencies: Iterable[int]) -> None:
    """Fail fast when seasonality metrics cannot be derived.

    Raises:
        UnsupportedFrequencyError: If frequency 2 is not requested.
    """
    freqs = list(frequencies)
    if _SEASONALITY_FREQUENCY not in freqs:
        raise UnsupportedFrequencyError(
            what="Cannot derive phase, amplitude and peak",
            cause=f"Frequencies {freqs} do not include {_SEASONALITY_FREQUENCY}",
            fix=f"Add {_SEASONALITY_FREQUENCY} to the harmonic frequencies",
        )


def _area_under_curve(model: HarmonicModel, year: int) -> float:
    """Trapezoidal integral of the curve's non-negative part over one year."""
    t = year + np.arange(_DAYS_PER_YEAR + 1, dtype=np.float64) / _DAYS_PER_YEAR
    curve = np.clip(predict_many(model, t), 0.0, None)
    step = 1.0 / _DAYS_PER_YEAR
    return float(np.sum((curve[1:] + curve[:-1]) * 0.5) * step)


def derive_phase_amplitude_peak(
    model: HarmonicModel,
    year: int | None = None,
) -> DerivedSeasonality:
    """Summarize the frequency-2 harmonic of *model*.

    ``c cos(wt) + s sin(wt) = A cos(wt - phi)`` with ``A = hypot(c, s)``
    and ``phi = atan2(s, c)``. Phase is ``phi / 2 pi`` in ``[0, 1)``, and
    the first peak of the year falls at ``t = phase / 2``.

    Args:
        model: Model fit with frequency 2 among its frequencies.
        year: Year integrated for the area under the curve. Defaults to
            the start of the model's validity, else the year of its origin.

    Returns:
        ``DerivedSeasonality`` for the model's band.

    Raises:
        UnsupportedFrequencyError: If frequency 2 is absent.

    Example:
        >>> m = HarmonicModel(
        ...     band="NDVI", frequencies=(2,),
        ...     coefficients={"intercept": 0.4, "cos_2": 0.2, "sin_2": 0.0},
        ... )
        >>> s = derive_phase_amplitude_peak(m)
        >>> (s.amplitude, s.phase, s.peak_julian_day)
        (0.2, 0.0, 1)
    """
    validate_seasonality_request(model.frequencies)
    cos_2 = model.coefficients[f"cos_{_SEASONALITY_FREQUENCY}"]
    sin_2 = model.coefficients[f"sin_{_SEASONALITY_FREQUENCY}"]

    amplitude = math.hypot(cos_2, sin_2)
    phase = (math.atan2(sin_2, cos_2) / _TWO_PI) % 1.0
    if phase >= 1.0:
        phase = 0.0

    peak_offset = round(phase / _SEASONALITY_FREQUENCY * _DAYS_PER_YEAR)
    peak_julian_day = int(peak_offset) % _DAYS_PER_YEAR + 1

    if year is None:
        anchor = model.validity[0] if model.validity is not None else model.origin
        year = math.floor(anchor)

    return DerivedSeasonality(
        band=model.band,
        amplitude=amplitude,
        phase=phase,
        peak_julian_day=peak_julian_day,
        area_under_curve=_area_under_curve(model, year),
    )


def fit_moving_windows(
    observations: Iterable[Observation],
    start_year: int,
    end_year: int,
    time_buffer: int,
    frequencies: Iterable[int],
    detrend: bool,
    bands: Sequence[str] | None = None,
) -> dict[int, HarmonicFit]:
    """Fit one model per centre year over a moving multi-year window.

    For each centre year ``y`` in ``[start_year + time_buffer,
    end_year - time_buffer]`` the observations whose calendar year lies in
    ``[y - time_buffer, y + time_buffer]`` are fit, and every resulting
    model is valid on ``[y - time_buffer, y + time_buffer + 1)``.

    Args:
        observations: Observations of one pixel.
        start_year: First calendar year of data.
        end_year: Last calendar year of data.
        time_buffer: Years on each side of the centre year.
        frequencies: Harmonic frequencies in cycles per year.
        detrend: Whether to include a linear trend term.
        bands: Bands to fit. Defaults to every band present.

    Returns:
        Centre year to ``HarmonicFit``.

    Raises:
        ConfigurationError: If the window parameters leave no centre year.
        InsufficientDataError: If a window lacks observations.
        SingularFitError: If a window's design matrix is rank deficient.
    """
    if time_buffer < 0 or start_year + time_buffer > end_year - time_buffer:
        raise ConfigurationError(
            what="Invalid moving-window parameters",
            cause=(
                f"No centre year between {start_year} and {end_year} "
                f"with a buffer of {time_buffer}"
            ),
            fix="Widen the year range or reduce time_buffer",
        )
    config = _checked_config(frequencies, detrend)
    obs = list(observations)
    years = np.floor([o.time for o in obs]) if obs else np.array([])

    results: dict[int, HarmonicFit] = {}
    for centre in range(start_year + time_buffer, end_year - time_buffer + 1):
        lo, hi = centre - time_buffer, centre + time_buffer
        window = [o for o, y in zip(obs, years) if lo <= y <= hi]
        window_fit = fit(window, config.frequencies, config.detrend, bands=bands)
        validity = (float(lo), float(hi + 1))
        results[centre] = HarmonicFit(
            models={
                band: replace(model, validity=validity)
                for band, model in window_fit.models.items()
            },
            fitted=window_fit.fitted,
        )
    return results


def synthesize_at_peak(
    harmonic_fit: HarmonicFit,
    year: int,
    reference_band: str,
) -> dict[str, float]:
    """Predict every band at the reference band's seasonal peak.

    The query date is ``year + peak_julian_day / 365`` of
    *reference_band*.

    Returns:
        Band name to predicted value, plus a ``"date"`` entry holding the
        query date.

    Raises:
        KeyError: If *reference_band* was not fit.
        UnsupportedFrequencyError: If frequency 2 was not fit.
    """
    seasonality = derive_phase_amplitude_peak(harmonic_fit[reference_band], year=year)
    date = year + seasonality.peak_julian_day / _DAYS_PER_YEAR
    synth = {band: predict(model, date) for band, model in harmonic_fit.models.items()}
    synth["date"] = date
    return synth
