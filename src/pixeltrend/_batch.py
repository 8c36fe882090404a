"""Apply the per-pixel components across a raster extent.

Every component is a pure function of one pixel, so a raster is processed
row by row on a thread pool with read-only shared parameters. Each row
writes only its own slice of the preallocated output arrays, so no locks
are needed.

Failure policy:
    * Configuration errors are raised once, before any pixel is touched.
    * A ``PixelError`` (or an invalid per-pixel trajectory) turns that
      pixel into NaN no-data. Failures are counted, logged at DEBUG per
      pixel and summarized at INFO per call.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor
from typing import Any

import numpy as np
import numpy.typing as npt
import xarray as xr

from pixeltrend._types import Observation, YearRange, to_fractional_year
from pixeltrend.analysis.harmonic import (
    derive_phase_amplitude_peak,
    fit,
    validate_seasonality_request,
)
from pixeltrend.analysis.segmented import (
    blend,
    breaks_for_bands,
    check_feather_window,
    predict_segmented,
)
from pixeltrend.analysis.trajectory import convert_to_loss_gain
from pixeltrend.config import (
    BandSpec,
    ChangeConfig,
    HarmonicConfig,
    PredictionConfig,
)
from pixeltrend.exceptions import ConfigurationError, PixelError
from pixeltrend.models import (
    HarmonicModel,
    SegmentSet,
    Trajectory,
    coefficient_names,
)
from pixeltrend.results import LossGainResult

logger = logging.getLogger(__name__)

_CUBE_DIMS: tuple[str, ...] = ("time", "band", "y", "x")
_SEASONALITY_FIELDS: tuple[str, ...] = ("amplitude", "phase", "peakJulianDay", "AUC")


# ── Helpers ────────────────────────────────────────────────────────


def _run_rows(
    n_rows: int,
    row_fn: Callable[[int], int],
    max_workers: int | None,
) -> int:
    """Run *row_fn* for every row index and return the total failures."""
    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        return sum(pool.map(row_fn, range(n_rows)))


def _spatial_coords(array: xr.DataArray) -> dict[str, Any]:
    return {d: array.coords[d].values for d in ("y", "x") if d in array.coords}


def _nan_grid(shape: tuple[int, ...]) -> npt.NDArray[np.float64]:
    return np.full(shape, np.nan, dtype=np.float64)


def _grid_shape(grid: npt.NDArray[np.object_], name: str) -> tuple[int, int]:
    if grid.ndim != 2:
        raise ConfigurationError(
            what=f"Invalid {name} grid",
            cause=f"Expected a 2-D (y, x) array, got {grid.ndim} dimension(s)",
        )
    return (int(grid.shape[0]), int(grid.shape[1]))


# ── Harmonic regression ────────────────────────────────────────────


def _fit_group(
    observations: list[Observation],
    bands: list[str],
    config: HarmonicConfig,
) -> dict[str, HarmonicModel]:
    """Fit bands sharing one config, keeping those that can be fit."""
    try:
        result = fit(
            observations, config.frequencies, config.detrend, bands, skip_failed=True
        )
    except PixelError as exc:
        logger.debug("Band(s) %s not fit: %s", bands, exc.what)
        return {}
    return dict(result.models)


def _fit_pixel(
    observations: list[Observation],
    groups: Mapping[HarmonicConfig, list[str]],
    seasonality: bool,
) -> dict[str, float]:
    """Fit one pixel and flatten its coefficients.

    Raises:
        PixelError: If no band of the pixel can be fit.
    """
    models: dict[str, HarmonicModel] = {}
    for config, bands in groups.items():
        models.update(_fit_group(observations, bands, config))
    if not models:
        raise PixelError(
            what="Cannot fit any band of the pixel",
            cause="Every band has too few valid or distinct observations",
        )

    flat: dict[str, float] = {}
    for model in models.values():
        flat.update(model.to_dict())
        if seasonality:
            flat.update(derive_phase_amplitude_peak(model).to_dict())
    return flat


def fit_harmonic_cube(
    cube: xr.DataArray,
    config: HarmonicConfig,
    seasonality: bool = False,
    max_workers: int | None = None,
    band_specs: Mapping[str, BandSpec] | None = None,
) -> xr.Dataset:
    """Fit harmonic models to every pixel of an observation cube.

    Args:
        cube: Observations with dims ``("time", "band", "y", "x")``; a
            ``time`` coordinate of fractional years or datetimes and a
            ``band`` coordinate of band names. NaN marks missing values.
        config: Harmonic regression parameters.
        seasonality: Also derive amplitude, phase, peak day and AUC.
        max_workers: Thread pool size (``None`` for the executor default).
        band_specs: Resolved band settings. A band whose spec sets its own
            frequencies is fit with them instead of ``config.frequencies``.

    Returns:
        Dataset with one ``(y, x)`` variable per ``<band>_<coefficient>``
        (and per seasonality metric). ``attrs["failed_pixels"]`` counts
        pixels that produced no-data.

    Raises:
        ConfigurationError: If the cube layout is wrong, or if
            *seasonality* is requested for a band fit without frequency 2.
    """
    if set(cube.dims) != set(_CUBE_DIMS):
        raise ConfigurationError(
            what="Invalid observation cube",
            cause=f"Expected dims {_CUBE_DIMS}, got {cube.dims}",
            fix="Rename or transpose the cube dimensions",
        )

    cube = cube.transpose(*_CUBE_DIMS)
    times = [to_fractional_year(t) for t in cube["time"].values]
    bands = [str(b) for b in cube["band"].values]
    data = np.asarray(cube.values, dtype=np.float64)
    _, _, n_y, n_x = data.shape

    specs = band_specs or {}
    groups: dict[HarmonicConfig, list[str]] = {}
    for band in bands:
        band_config = specs[band].harmonic_config(config) if band in specs else config
        groups.setdefault(band_config, []).append(band)

    names: list[str] = []
    for band_config, group in groups.items():
        if seasonality:
            validate_seasonality_request(band_config.frequencies)
        coefs = coefficient_names(band_config.frequencies, band_config.detrend)
        names += [f"{band}_{coef}" for band in group for coef in coefs]
    if seasonality:
        names += [f"{band}_{field}" for band in bands for field in _SEASONALITY_FIELDS]
    outputs = {name: _nan_grid((n_y, n_x)) for name in names}

    def row(y: int) -> int:
        failures = 0
        for x in range(n_x):
            pixel = data[:, :, y, x]
            observations = [
                Observation(t, dict(zip(bands, values)))
                for t, values in zip(times, pixel)
            ]
            try:
                flat = _fit_pixel(observations, groups, seasonality)
            except PixelError as exc:
                logger.debug("Pixel (%d, %d) not fit: %s", y, x, exc.what)
                failures += 1
                continue
            for name, value in flat.items():
                outputs[name][y, x] = value
        return failures

    failed = _run_rows(n_y, row, max_workers)
    logger.info("Harmonic fit: %d pixel(s), %d failed", n_y * n_x, failed)
    return xr.Dataset(
        {name: (("y", "x"), grid) for name, grid in outputs.items()},
        coords=_spatial_coords(cube),
        attrs={"failed_pixels": failed},
    )


# ── Segmented prediction ───────────────────────────────────────────


def _coverages(grids: Sequence[npt.NDArray[np.object_]]) -> list[YearRange]:
    """Collect the covered ranges of every non-empty pixel run."""
    ranges: list[YearRange] = []
    for grid in grids:
        for segment_set in grid.ravel():
            if segment_set is not None:
                ranges.extend(segment_set.coverage)
    return ranges


def predict_segmented_cube(
    early: npt.NDArray[np.object_],
    late: npt.NDArray[np.object_] | None,
    band: str,
    dates: Sequence[Any],
    config: PredictionConfig,
    max_workers: int | None = None,
) -> xr.DataArray:
    """Predict *band* at every date for a grid of segmentation runs.

    Args:
        early: ``(y, x)`` object array of ``SegmentSet`` (or ``None`` for
            pixels without segments).
        late: Grid of the later run, required when *config* feathers.
        band: Band to predict.
        dates: Query dates.
        config: Gap filling and feathering parameters.
        max_workers: Thread pool size.

    Returns:
        DataArray with dims ``("time", "y", "x")``; NaN where no segment
        applies.

    Raises:
        ConfigurationError: If a feathered prediction lacks *late* or the
            grids differ in shape.
        InvalidFeatherWindowError: If a window bound lies outside the
            ranges covered by the extent's runs.
    """
    n_y, n_x = _grid_shape(early, "early")
    window: tuple[npt.NDArray[np.object_], float, float] | None = None
    if config.feather_start is not None and config.feather_end is not None:
        if late is None:
            raise ConfigurationError(
                what="Feathered prediction needs two runs",
                cause="No late segment grid was given",
                fix="Pass the later run's grid or drop the feathering window",
            )
        if _grid_shape(late, "late") != (n_y, n_x):
            raise ConfigurationError(
                what="Segment grids differ in shape",
                cause=f"early {early.shape} vs late {late.shape}",
            )
        check_feather_window(
            config.feather_start, config.feather_end, _coverages([early, late])
        )
        window = (late, config.feather_start, config.feather_end)

    times = [to_fractional_year(d) for d in dates]
    out = np.full((len(times), n_y, n_x), np.nan, dtype=np.float64)
    empty = SegmentSet(segments=())

    def row(y: int) -> int:
        for x in range(n_x):
            a = early[y, x] or empty
            if window is not None:
                late_grid, start, end = window
                b = late_grid[y, x] or empty
                values = [
                    blend(a, b, band, t, start, end, config.fill_gaps)
                    for t in times
                ]
            else:
                values = [
                    predict_segmented(a, band, t, config.fill_gaps) for t in times
                ]
            out[:, y, x] = values
        return 0

    _run_rows(n_y, row, max_workers)
    logger.info("Segmented prediction: %d pixel(s) x %d date(s)", n_y * n_x, len(times))
    return xr.DataArray(
        out,
        dims=("time", "y", "x"),
        coords={"time": np.asarray(times)},
        name=f"{band}_fitted",
    )


def segment_breaks_cube(
    segment_sets: npt.NDArray[np.object_],
    bands: Sequence[str],
    directions: Mapping[str, int],
    min_change_probability: float = 1.0,
    max_workers: int | None = None,
) -> xr.Dataset:
    """Most recent and largest loss/gain breaks for every pixel.

    Returns:
        Dataset with one ``(y, x)`` variable per
        ``<band>_<method>_<direction>_{year,mag}`` key.
    """
    n_y, n_x = _grid_shape(segment_sets, "segment")
    missing = [b for b in bands if b not in directions]
    if missing:
        raise ConfigurationError(
            what="Missing improvement directions",
            cause=f"No direction for band(s) {missing}",
            fix="Resolve bands with config.resolve_bands()",
        )

    empty = SegmentSet(segments=())
    keys = list(breaks_for_bands(empty, bands, dict(directions)))
    outputs = {key: _nan_grid((n_y, n_x)) for key in keys}

    def row(y: int) -> int:
        for x in range(n_x):
            flat = breaks_for_bands(
                segment_sets[y, x] or empty,
                bands,
                dict(directions),
                min_change_probability,
            )
            for key, value in flat.items():
                outputs[key][y, x] = value
        return 0

    _run_rows(n_y, row, max_workers)
    return xr.Dataset({key: (("y", "x"), grid) for key, grid in outputs.items()})


# ── Trajectory change detection ────────────────────────────────────


def loss_gain_cube(
    vertex_years: xr.DataArray,
    vertex_values: xr.DataArray,
    band: str,
    config: ChangeConfig,
    improvement_direction: int,
    scale: float = 1.0,
    max_workers: int | None = None,
) -> xr.Dataset:
    """Select loss and gain events for every pixel's trajectory.

    Args:
        vertex_years: Vertex years with dims ``("vertex", "y", "x")``;
            NaN pads pixels with fewer vertices.
        vertex_values: Fitted values at the vertices, same shape.
        band: Band name used for output keys.
        config: Thresholds and selection rules.
        improvement_direction: ``+1`` or ``-1`` for *band*.
        scale: Multiplier applied to the fitted values first (e.g.
            ``0.0001`` for values stored as scaled integers).
        max_workers: Thread pool size.

    Returns:
        Dataset with one ``(y, x)`` variable per
        ``<band>_LT_<direction>_<field>_<i>`` key.
        ``attrs["failed_pixels"]`` counts pixels without a usable
        trajectory.
    """
    if improvement_direction not in (1, -1):
        raise ConfigurationError(
            what=f"Invalid improvement direction {improvement_direction}",
            cause="Improvement direction must be +1 or -1",
        )
    dims = ("vertex", "y", "x")
    if set(vertex_years.dims) != set(dims) or vertex_years.shape != vertex_values.shape:
        raise ConfigurationError(
            what="Invalid vertex arrays",
            cause=(
                f"Expected matching dims {dims}, got {vertex_years.dims} "
                f"{vertex_years.shape} and {vertex_values.dims} {vertex_values.shape}"
            ),
        )
    years = np.asarray(vertex_years.transpose(*dims).values, dtype=np.float64)
    values = np.asarray(vertex_values.transpose(*dims).values, dtype=np.float64)
    _, n_y, n_x = years.shape

    keys = list(LossGainResult(how_many=config.how_many_to_pull).to_flat(band))
    outputs = {key: _nan_grid((n_y, n_x)) for key in keys}

    def row(y: int) -> int:
        failures = 0
        for x in range(n_x):
            try:
                trajectory = Trajectory.from_arrays(years[:, y, x], values[:, y, x])
            except ValueError as exc:
                logger.debug("Pixel (%d, %d) has no usable trajectory: %s", y, x, exc)
                failures += 1
                continue
            result = convert_to_loss_gain(
                trajectory.scaled(scale), config, improvement_direction
            )
            for key, value in result.to_flat(band).items():
                outputs[key][y, x] = value
        return failures

    failed = _run_rows(n_y, row, max_workers)
    logger.info("Loss/gain detection: %d pixel(s), %d failed", n_y * n_x, failed)
    return xr.Dataset(
        {key: (("y", "x"), grid) for key, grid in outputs.items()},
        coords=_spatial_coords(vertex_years),
        attrs={"failed_pixels": failed},
    )
