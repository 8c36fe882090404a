"""Tests for change-detection result records."""

from __future__ import annotations

import math

import pytest

from pixeltrend.models import ChangeEvent
from pixeltrend.results import BreakEvent, BreakSummary, LossGainResult

LOSS = ChangeEvent("loss", 2005, 2010, 0.5, 0.2, -0.3, pace="slow")
GAIN = ChangeEvent("gain", 2010, 2015, 0.2, 0.6, 0.4)


@pytest.mark.unit
class TestLossGainResult:
    """Verify flattening and export of selected events."""

    def test_flat_keys_are_stable(self) -> None:
        flat = LossGainResult(how_many=2).to_flat("NBR")
        assert len(flat) == 2 * 4 * 2
        assert "NBR_LT_loss_yr_1" in flat
        assert "NBR_LT_gain_slope_2" in flat
        assert all(math.isnan(v) for v in flat.values())

    def test_flat_values(self) -> None:
        flat = LossGainResult(loss=[LOSS], gain=[GAIN], how_many=2).to_flat("NBR")
        assert flat["NBR_LT_loss_yr_1"] == 2010
        assert flat["NBR_LT_loss_dur_1"] == 5
        assert flat["NBR_LT_loss_mag_1"] == -0.3
        assert flat["NBR_LT_loss_slope_1"] == pytest.approx(-0.06)
        assert math.isnan(flat["NBR_LT_loss_yr_2"])
        assert flat["NBR_LT_gain_mag_1"] == 0.4

    def test_to_dataframe(self) -> None:
        frame = LossGainResult(loss=[LOSS], gain=[GAIN]).to_dataframe()
        assert list(frame["direction"]) == ["loss", "gain"]
        assert list(frame["rank"]) == [1, 1]
        assert frame.loc[0, "pace"] == "slow"

    def test_to_dataframe_empty_has_columns(self) -> None:
        frame = LossGainResult().to_dataframe()
        assert frame.empty
        assert "magnitude" in frame.columns

    def test_repr(self) -> None:
        text = repr(LossGainResult(loss=[LOSS]))
        assert text.startswith("LossGainResult(")
        assert "loss=1" in text
        assert "gain=0" in text


@pytest.mark.unit
class TestBreakSummary:
    def test_empty_summary_is_nan(self) -> None:
        flat = BreakSummary().to_flat("NDVI")
        assert len(flat) == 8
        assert all(math.isnan(v) for v in flat.values())

    def test_flat_values(self) -> None:
        summary = BreakSummary()
        summary.most_recent["loss"] = BreakEvent(2012.5, -0.2)
        summary.highest_mag["gain"] = BreakEvent(2008.0, 0.3)
        flat = summary.to_flat("NDVI")
        assert flat["NDVI_mostRecent_loss_year"] == 2012.5
        assert flat["NDVI_mostRecent_loss_mag"] == -0.2
        assert flat["NDVI_highestMag_gain_year"] == 2008.0
        assert math.isnan(flat["NDVI_highestMag_loss_mag"])
