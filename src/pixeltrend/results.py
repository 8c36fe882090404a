"""Result records for change-detection outputs.

Dataclasses (not pydantic) because they carry model entities and are
built in per-pixel hot loops. Every record flattens to a mapping of
numeric values via ``to_flat`` so the caller can encode it as raster bands,
and to a pandas DataFrame for inspection.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from pixeltrend.models import ChangeEvent, Direction

if TYPE_CHECKING:
    import pandas as pd

_DIRECTIONS: tuple[Direction, ...] = ("loss", "gain")

# Flattened output keys per event field, in export order.
_EVENT_FIELDS: tuple[tuple[str, str], ...] = (
    ("yr", "end_year"),
    ("dur", "duration"),
    ("mag", "magnitude"),
    ("slope", "slope"),
)


@dataclass
class LossGainResult:
    """Selected loss and gain events of one pixel's trajectory.

    Attributes:
        loss: Up to ``how_many`` loss events in selection order.
        gain: Up to ``how_many`` gain events in selection order.
        how_many: Number of slots per direction in flattened output.

    Example:
        >>> result = LossGainResult(loss=[], gain=[], how_many=1)
        >>> result.to_flat("NBR")["NBR_LT_loss_yr_1"]
        nan
    """

    loss: list[ChangeEvent] = field(default_factory=list)
    gain: list[ChangeEvent] = field(default_factory=list)
    how_many: int = 1

    def __repr__(self) -> str:
        """Return a one-line summary of each direction's first event."""
        parts = []
        for direction in _DIRECTIONS:
            events = getattr(self, direction)
            if events:
                first = events[0]
                parts.append(
                    f"{direction}={len(events)} "
                    f"(first {first.start_year}→{first.end_year}, "
                    f"mag {first.magnitude:+.3f})"
                )
            else:
                parts.append(f"{direction}=0")
        return f"{type(self).__name__}({', '.join(parts)})"

    def to_flat(self, band: str) -> dict[str, float]:
        """Flatten into ``<band>_LT_<direction>_<field>_<i>`` keys.

        Slots without a selected event are NaN so every pixel yields the
        same keys.

        Args:
            band: Band name used as key prefix.

        Returns:
            Mapping with ``2 * 4 * how_many`` numeric entries.
        """
        flat: dict[str, float] = {}
        for direction in _DIRECTIONS:
            events: list[ChangeEvent] = getattr(self, direction)
            for key, attr in _EVENT_FIELDS:
                for i in range(1, self.how_many + 1):
                    value = (
                        float(getattr(events[i - 1], attr))
                        if i <= len(events)
                        else math.nan
                    )
                    flat[f"{band}_LT_{direction}_{key}_{i}"] = value
        return flat

    def to_dataframe(self) -> pd.DataFrame:
        """Export selected events, one row per event.

        Returns:
            DataFrame with a ``rank`` column (1-based within direction)
            and the event fields.
        """
        import pandas as pd

        rows: list[dict[str, Any]] = []
        for direction in _DIRECTIONS:
            for rank, event in enumerate(getattr(self, direction), start=1):
                rows.append({"rank": rank, **event.to_dict()})
        columns = [
            "rank",
            "direction",
            "start_year",
            "end_year",
            "duration",
            "magnitude",
            "slope",
            "pace",
        ]
        return pd.DataFrame(rows, columns=columns)


@dataclass(frozen=True)
class BreakEvent:
    """A break between two segments of a segmentation run.

    Attributes:
        date: Break date in fractional years.
        magnitude: Break magnitude, sign-adjusted so losses are negative.
    """

    date: float
    magnitude: float


@dataclass
class BreakSummary:
    """Loss and gain breaks of one pixel under two sorting methods.

    Attributes:
        most_recent: Latest loss and gain break, keyed by direction.
        highest_mag: Largest-magnitude loss and gain break, keyed by
            direction.
    """

    most_recent: dict[str, BreakEvent | None] = field(
        default_factory=lambda: {"loss": None, "gain": None}
    )
    highest_mag: dict[str, BreakEvent | None] = field(
        default_factory=lambda: {"loss": None, "gain": None}
    )

    def to_flat(self, band: str) -> dict[str, float]:
        """Flatten into ``<band>_<method>_<direction>_{year,mag}`` keys."""
        flat: dict[str, float] = {}
        for method, table in (
            ("mostRecent", self.most_recent),
            ("highestMag", self.highest_mag),
        ):
            for direction in _DIRECTIONS:
                event = table.get(direction)
                prefix = f"{band}_{method}_{direction}"
                flat[f"{prefix}_year"] = event.date if event else math.nan
                flat[f"{prefix}_mag"] = event.magnitude if event else math.nan
        return flat
