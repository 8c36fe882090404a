"""Configuration models and parameter-file loading for pixeltrend.

Every analysis function receives its parameters as explicit, immutable
pydantic models. There is no module-level default configuration: batch
callers build (or load) a ``Config`` once at setup and pass its parts down.
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any, Literal, get_args

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from pixeltrend.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

_CONFIG_ENV_VAR = "PIXELTREND_CONFIG"

SelectionRule = Literal[
    "newest",
    "oldest",
    "largest",
    "smallest",
    "steepest",
    "mostGradual",
    "shortest",
    "longest",
]
SELECTION_RULES: tuple[str, ...] = get_args(SelectionRule)

ImprovementDirection = Literal[1, -1]


def _check_frequencies(v: tuple[int, ...]) -> tuple[int, ...]:
    if not v:
        msg = "frequencies must contain at least one harmonic"
        raise ValueError(msg)
    if any(f <= 0 for f in v):
        msg = "frequencies must be positive integers"
        raise ValueError(msg)
    if len(set(v)) != len(v):
        msg = "frequencies must not repeat"
        raise ValueError(msg)
    return v


class BandSpec(BaseModel):
    """Per-band settings resolved once at setup.

    Args:
        name: Band or index identifier.
        improvement_direction: ``+1`` if an increase in the band means
            ecological improvement (e.g. NDVI), ``-1`` if an increase means
            degradation (e.g. shortwave-infrared reflectance).
        frequencies: Harmonic frequencies for this band. ``None`` uses the
            run's ``HarmonicConfig``.

    Example:
        >>> BandSpec(name="NBR", improvement_direction=1).improvement_direction
        1
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str
    improvement_direction: ImprovementDirection
    frequencies: tuple[int, ...] | None = None

    @field_validator("frequencies")
    @classmethod
    def _validate_frequencies(
        cls, v: tuple[int, ...] | None
    ) -> tuple[int, ...] | None:
        """Ensure band frequencies, when given, are valid harmonics."""
        return None if v is None else _check_frequencies(v)

    def harmonic_config(self, default: HarmonicConfig) -> HarmonicConfig:
        """Return *default* with this band's frequencies, if it sets any.

        Example:
            >>> spec = BandSpec(name="NDVI", improvement_direction=1, frequencies=(2,))
            >>> spec.harmonic_config(HarmonicConfig(frequencies=(1, 2), detrend=True))
            HarmonicConfig(frequencies=(2,), detrend=True)
        """
        if self.frequencies is None:
            return default
        return default.model_copy(update={"frequencies": self.frequencies})


# Direction in which each known band/index improves.
KNOWN_BANDS: Mapping[str, BandSpec] = {
    spec.name: spec
    for spec in (
        BandSpec(name="blue", improvement_direction=-1),
        BandSpec(name="green", improvement_direction=-1),
        BandSpec(name="red", improvement_direction=-1),
        BandSpec(name="nir", improvement_direction=1),
        BandSpec(name="swir1", improvement_direction=-1),
        BandSpec(name="swir2", improvement_direction=-1),
        BandSpec(name="NDVI", improvement_direction=1),
        BandSpec(name="EVI", improvement_direction=1),
        BandSpec(name="NBR", improvement_direction=1),
        BandSpec(name="NDMI", improvement_direction=1),
        BandSpec(name="brightness", improvement_direction=-1),
        BandSpec(name="greenness", improvement_direction=1),
        BandSpec(name="wetness", improvement_direction=1),
        BandSpec(name="tcAngleBG", improvement_direction=1),
    )
}


def resolve_bands(
    names: Iterable[str],
    overrides: Iterable[BandSpec] = (),
) -> dict[str, BandSpec]:
    """Resolve band names to their ``BandSpec``.

    Overrides take precedence over ``KNOWN_BANDS`` and may introduce
    bands the registry does not know.

    Args:
        names: Band identifiers requested by the caller.
        overrides: Explicit per-band settings.

    Returns:
        Mapping from band name to ``BandSpec`` in request order.

    Raises:
        ConfigurationError: If a band is neither overridden nor known.
    """
    table = dict(KNOWN_BANDS)
    table.update({spec.name: spec for spec in overrides})
    resolved: dict[str, BandSpec] = {}
    for name in names:
        if name not in table:
            raise ConfigurationError(
                what=f"Unknown band {name!r}",
                cause="Band has no improvement direction in the band registry",
                fix=(
                    "Pass BandSpec(name=..., improvement_direction=+1 or -1) "
                    "as an override"
                ),
            )
        resolved[name] = table[name]
    return resolved


class HarmonicConfig(BaseModel):
    """Harmonic regression parameters.

    Args:
        frequencies: Harmonic frequencies in cycles per year, in fit order.
        detrend: Whether to include a linear trend term.

    Example:
        >>> cfg = HarmonicConfig(frequencies=(1, 2, 3), detrend=True)
        >>> cfg.n_coefficients
        8
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    frequencies: tuple[int, ...]
    detrend: bool

    @field_validator("frequencies")
    @classmethod
    def _validate_frequencies(cls, v: tuple[int, ...]) -> tuple[int, ...]:
        """Ensure frequencies are a non-empty set of positive integers."""
        return _check_frequencies(v)

    @property
    def n_coefficients(self) -> int:
        """Number of unknowns in the harmonic model."""
        return 1 + int(self.detrend) + 2 * len(self.frequencies)


class PredictionConfig(BaseModel):
    """Segmented prediction and feathering parameters.

    Args:
        fill_gaps: Carry the preceding segment forward across gaps.
        feather_start: Start of the cross-fade window (fractional year).
        feather_end: End of the cross-fade window (fractional year).
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    fill_gaps: bool
    feather_start: float | None = None
    feather_end: float | None = None

    @model_validator(mode="after")
    def _validate_window(self) -> PredictionConfig:
        """Ensure feather bounds are given together and ordered."""
        if (self.feather_start is None) != (self.feather_end is None):
            msg = "feather_start and feather_end must be given together"
            raise ValueError(msg)
        if (
            self.feather_start is not None
            and self.feather_end is not None
            and self.feather_start >= self.feather_end
        ):
            msg = "feather_start must be before feather_end"
            raise ValueError(msg)
        return self

    @property
    def feathered(self) -> bool:
        """Whether a feathering window is configured."""
        return self.feather_start is not None


class ChangeConfig(BaseModel):
    """Loss/gain detection and selection parameters.

    Loss thresholds are normally negative and gain thresholds positive;
    only their absolute values are compared against event magnitudes and
    slopes.

    Example:
        >>> cfg = ChangeConfig(
        ...     loss_mag_thresh=-0.15, loss_slope_thresh=-0.05,
        ...     gain_mag_thresh=0.1, gain_slope_thresh=0.05,
        ...     slow_loss_duration_thresh=3,
        ...     choose_which_loss="largest", choose_which_gain="largest",
        ...     how_many_to_pull=1,
        ... )
        >>> cfg.how_many_to_pull
        1
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    loss_mag_thresh: float
    loss_slope_thresh: float
    gain_mag_thresh: float
    gain_slope_thresh: float
    slow_loss_duration_thresh: float
    choose_which_loss: SelectionRule
    choose_which_gain: SelectionRule
    how_many_to_pull: int = Field(ge=1)


class Config(BaseModel):
    """Complete parameter set for one batch run.

    Each section is optional so a run can configure only the components
    it uses.

    Example:
        >>> cfg = Config(harmonic=HarmonicConfig(frequencies=(2,), detrend=False))
        >>> cfg.change is None
        True
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    harmonic: HarmonicConfig | None = None
    prediction: PredictionConfig | None = None
    change: ChangeConfig | None = None
    bands: tuple[BandSpec, ...] = ()


def resolve_config_path(explicit: Path | str | None = None) -> Path | None:
    """Resolve the parameter file path.

    Resolution order:
        1. *explicit* argument (highest priority)
        2. ``PIXELTREND_CONFIG`` environment variable

    Args:
        explicit: An explicit path.

    Returns:
        Resolved ``Path``, or ``None`` if no candidate exists.
    """
    if explicit is not None:
        path = Path(explicit).expanduser()
    elif os.environ.get(_CONFIG_ENV_VAR):
        path = Path(os.environ[_CONFIG_ENV_VAR]).expanduser()
    else:
        return None

    if not path.exists():
        logger.debug("Parameter file %s does not exist", path)
        return None
    return path


def load_config(path: Path | str) -> Config:
    """Load and validate a JSON parameter file.

    Args:
        path: Absolute or ``~``-expanded path to the JSON file.

    Returns:
        The validated ``Config``.

    Raises:
        ConfigurationError: If the file is missing, is not valid JSON,
            or fails validation.
    """
    resolved = Path(path).expanduser()
    try:
        text = resolved.read_text(encoding="utf-8")
    except FileNotFoundError:
        raise ConfigurationError(
            what="Cannot read parameter file",
            cause=f"File not found: {resolved}",
            fix=(
                f"Create {resolved}, or set the {_CONFIG_ENV_VAR} "
                "environment variable"
            ),
        ) from None
    except PermissionError:
        raise ConfigurationError(
            what="Cannot read parameter file",
            cause=f"Permission denied: {resolved}",
            fix=f"Check file permissions on {resolved}",
        ) from None

    try:
        parsed: Any = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ConfigurationError(
            what="Invalid parameter file format",
            cause=f"JSON parse error in {resolved}: {exc}",
            fix='Ensure the file contains a JSON object such as {"harmonic": {...}}',
        ) from None

    if not isinstance(parsed, dict):
        raise ConfigurationError(
            what="Invalid parameter file format",
            cause=f"Expected a JSON object in {resolved}, got {type(parsed).__name__}",
            fix='Ensure the file contains a JSON object such as {"harmonic": {...}}',
        )

    try:
        config = Config.model_validate(parsed)
    except ValidationError as exc:
        raise ConfigurationError(
            what="Invalid parameters",
            cause=f"{exc.error_count()} validation error(s) in {resolved}: {exc}",
            fix="Correct the listed fields",
        ) from None

    logger.debug("Loaded parameters from %s", resolved)
    return config
