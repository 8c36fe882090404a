"""Tests for harmonic regression and seasonality metrics."""

from __future__ import annotations

import numpy as np
import numpy.testing as npt
import pytest

from pixeltrend import Observation
from pixeltrend.analysis.harmonic import (
    HarmonicFit,
    derive_phase_amplitude_peak,
    design_matrix,
    fit,
    fit_moving_windows,
    predict,
    predict_many,
    synthesize_at_peak,
    validate_seasonality_request,
)
from pixeltrend.exceptions import (
    ConfigurationError,
    InsufficientDataError,
    SingularFitError,
    UnsupportedFrequencyError,
)
from pixeltrend.models import HarmonicModel


def _model(**coefficients: float) -> HarmonicModel:
    return HarmonicModel(band="NDVI", frequencies=(2,), coefficients=coefficients)


class TestDesignMatrix:
    """Tests for design_matrix()."""

    @pytest.mark.unit
    def test_column_layout(self) -> None:
        x = design_matrix(np.array([2000.0, 2000.25]), [1], True, origin=2000.0)
        assert x.shape == (2, 4)
        npt.assert_allclose(x[:, 0], [1.0, 1.0])
        npt.assert_allclose(x[:, 1], [0.0, 0.25])
        # cos/sin of 2 pi t at t = 0 and a quarter year.
        npt.assert_allclose(x[:, 2], [1.0, 0.0], atol=1e-9)
        npt.assert_allclose(x[:, 3], [0.0, 1.0], atol=1e-9)


class TestFit:
    """Tests for fit()."""

    @pytest.mark.unit
    def test_recovers_known_coefficients(
        self,
        clean_observations: list[Observation],
        true_coefficients: dict[str, dict[str, float]],
    ) -> None:
        """Noise-free input reproduces the generating coefficients."""
        result = fit(clean_observations, frequencies=[1, 2], detrend=True)

        assert result.bands == ["NDVI", "swir2"]
        for band, expected in true_coefficients.items():
            model = result[band]
            for name, value in expected.items():
                npt.assert_allclose(model.coefficients[name], value, atol=1e-8)
            assert model.rmse < 1e-10
            assert model.origin == clean_observations[0].time

    @pytest.mark.unit
    def test_fitted_frame(self, clean_observations: list[Observation]) -> None:
        result = fit(clean_observations, frequencies=[1, 2], detrend=True)
        assert list(result.fitted.columns) == ["NDVI_fitted", "swir2_fitted"]
        assert result.fitted.index.name == "time"
        assert len(result.fitted) == len(clean_observations)
        observed = np.array([o.value("NDVI") for o in clean_observations])
        fitted = result.fitted["NDVI_fitted"].to_numpy()
        npt.assert_allclose(fitted, observed, atol=1e-8)

    @pytest.mark.unit
    def test_idempotent(self, clean_observations: list[Observation]) -> None:
        """Repeated fits give identical coefficients."""
        first = fit(clean_observations, frequencies=[1, 2], detrend=True)
        second = fit(clean_observations, frequencies=[1, 2], detrend=True)
        assert first.to_dict() == second.to_dict()

    @pytest.mark.unit
    def test_band_subset(self, clean_observations: list[Observation]) -> None:
        result = fit(
            clean_observations, frequencies=[1], detrend=False, bands=["swir2"]
        )
        assert result.bands == ["swir2"]

    @pytest.mark.unit
    def test_missing_values_per_band(
        self,
        clean_observations: list[Observation],
        true_coefficients: dict[str, dict[str, float]],
    ) -> None:
        """Bands with different gaps are fit on their own valid samples."""
        gappy = [
            Observation(o.timestamp, {**o.bands, "NDVI": None}) if i % 3 == 0 else o
            for i, o in enumerate(clean_observations)
        ]
        result = fit(gappy, frequencies=[1, 2], detrend=True)
        for band in ("NDVI", "swir2"):
            npt.assert_allclose(
                result[band].coefficients["cos_1"],
                true_coefficients[band]["cos_1"],
                atol=1e-8,
            )
        assert not result.fitted["NDVI_fitted"].isna().any()

    @pytest.mark.unit
    def test_without_trend_has_no_slope(
        self, clean_observations: list[Observation]
    ) -> None:
        model = fit(clean_observations, frequencies=[2], detrend=False)["NDVI"]
        assert "slope" not in model.coefficients
        assert model.origin == 0.0

    @pytest.mark.unit
    def test_empty_observations(self) -> None:
        with pytest.raises(InsufficientDataError):
            fit([], frequencies=[1], detrend=False)

    @pytest.mark.unit
    def test_fewer_samples_than_unknowns(self) -> None:
        obs = [Observation(2020.0 + i / 10, {"NDVI": 0.5}) for i in range(4)]
        with pytest.raises(InsufficientDataError, match="4 valid observations"):
            fit(obs, frequencies=[1, 2], detrend=False)

    @pytest.mark.unit
    def test_sparse_band_fails_whole_fit_by_default(
        self, clean_observations: list[Observation]
    ) -> None:
        sparse = [
            Observation(o.timestamp, {**o.bands, "swir2": None}) if i >= 3 else o
            for i, o in enumerate(clean_observations)
        ]
        with pytest.raises(InsufficientDataError, match="swir2"):
            fit(sparse, frequencies=[1, 2], detrend=True)

    @pytest.mark.unit
    def test_skip_failed_keeps_bands_that_fit(
        self,
        clean_observations: list[Observation],
        true_coefficients: dict[str, dict[str, float]],
    ) -> None:
        sparse = [
            Observation(o.timestamp, {**o.bands, "swir2": None}) if i >= 3 else o
            for i, o in enumerate(clean_observations)
        ]
        result = fit(sparse, frequencies=[1, 2], detrend=True, skip_failed=True)
        assert result.bands == ["NDVI"]
        assert list(result.failed) == ["swir2"]
        assert "3 valid observations" in result.failed["swir2"]
        npt.assert_allclose(
            result["NDVI"].coefficients["cos_1"],
            true_coefficients["NDVI"]["cos_1"],
            atol=1e-8,
        )
        assert result.fitted["swir2_fitted"].isna().all()
        assert not result.fitted["NDVI_fitted"].isna().any()

    @pytest.mark.unit
    def test_skip_failed_raises_when_nothing_fits(self) -> None:
        obs = [Observation(2020.0 + i / 10, {"NDVI": 0.5}) for i in range(4)]
        with pytest.raises(InsufficientDataError):
            fit(obs, frequencies=[1, 2], detrend=False, skip_failed=True)

    @pytest.mark.unit
    def test_failed_is_empty_on_success(
        self, clean_observations: list[Observation]
    ) -> None:
        result = fit(clean_observations, frequencies=[1], detrend=False)
        assert result.failed == {}

    @pytest.mark.unit
    def test_repeated_time_is_singular(self) -> None:
        obs = [Observation(2020.0, {"NDVI": 0.5 + i / 100}) for i in range(10)]
        with pytest.raises(SingularFitError, match="rank"):
            fit(obs, frequencies=[1], detrend=False)

    @pytest.mark.unit
    @pytest.mark.parametrize("freqs", [[], [0], [1, 1]])
    def test_invalid_frequencies(self, freqs: list[int]) -> None:
        obs = [Observation(2020.0 + i / 10, {"NDVI": 0.5}) for i in range(10)]
        with pytest.raises(ConfigurationError):
            fit(obs, frequencies=freqs, detrend=False)


class TestPredict:
    """Tests for predict() and predict_many()."""

    @pytest.mark.unit
    def test_predict_matches_fit(
        self,
        clean_observations: list[Observation],
    ) -> None:
        result = fit(clean_observations, frequencies=[1, 2], detrend=True)
        obs = clean_observations[7]
        assert predict(result["NDVI"], obs.time) == pytest.approx(obs.value("NDVI"))

    @pytest.mark.unit
    def test_predict_accepts_timestamps(self) -> None:
        model = _model(intercept=0.4, cos_2=0.2, sin_2=0.0)
        # New year: cos(0) = 1.
        assert predict(model, "2021-01-01") == pytest.approx(0.6)

    @pytest.mark.unit
    def test_extrapolates(self) -> None:
        model = HarmonicModel.from_vector(
            "NDVI",
            [1],
            True,
            [0.5, 0.01, 0.0, 0.0],
            origin=2000.0,
            validity=(2000.0, 2005.0),
        )
        assert predict(model, 2030.0) == pytest.approx(0.8)

    @pytest.mark.unit
    def test_predict_many(self) -> None:
        model = _model(intercept=0.4, cos_2=0.2, sin_2=0.0)
        values = predict_many(model, np.array([2020.0, 2020.25]))
        npt.assert_allclose(values, [0.6, 0.2], atol=1e-9)

    @pytest.mark.unit
    def test_predict_many_from_strings(self) -> None:
        model = _model(intercept=0.4, cos_2=0.0, sin_2=0.0)
        values = predict_many(model, ["2020-01-01", "2020-06-01"])
        npt.assert_allclose(values, [0.4, 0.4])


class TestSeasonality:
    """Tests for derive_phase_amplitude_peak()."""

    @pytest.mark.unit
    def test_pure_cosine(self) -> None:
        season = derive_phase_amplitude_peak(
            _model(intercept=0.4, cos_2=0.2, sin_2=0.0)
        )
        assert season.amplitude == pytest.approx(0.2)
        assert season.phase == 0.0
        assert season.peak_julian_day == 1

    @pytest.mark.unit
    def test_pure_sine_peaks_an_eighth_of_a_year_in(self) -> None:
        season = derive_phase_amplitude_peak(
            _model(intercept=0.4, cos_2=0.0, sin_2=0.2)
        )
        assert season.amplitude == pytest.approx(0.2)
        assert season.phase == pytest.approx(0.25)
        # Peak of sin(4 pi t) at t = 1/8 year, 45.625 days in.
        assert season.peak_julian_day == 47

    @pytest.mark.unit
    def test_negative_phase_wraps(self) -> None:
        season = derive_phase_amplitude_peak(
            _model(intercept=0.4, cos_2=0.0, sin_2=-0.2)
        )
        assert season.phase == pytest.approx(0.75)
        assert 1 <= season.peak_julian_day <= 365

    @pytest.mark.unit
    def test_phase_range(self) -> None:
        rng = np.random.default_rng(7)
        for c, s in rng.normal(size=(50, 2)):
            season = derive_phase_amplitude_peak(
                _model(intercept=0.0, cos_2=c, sin_2=s)
            )
            assert 0.0 <= season.phase < 1.0
            assert 1 <= season.peak_julian_day <= 365
            assert season.amplitude >= 0.0

    @pytest.mark.unit
    def test_area_under_constant_curve(self) -> None:
        season = derive_phase_amplitude_peak(
            _model(intercept=0.4, cos_2=0.0, sin_2=0.0), year=2020
        )
        assert season.area_under_curve == pytest.approx(0.4)

    @pytest.mark.unit
    def test_area_ignores_negative_values(self) -> None:
        season = derive_phase_amplitude_peak(
            _model(intercept=-1.0, cos_2=0.2, sin_2=0.0), year=2020
        )
        assert season.area_under_curve == 0.0

    @pytest.mark.unit
    def test_requires_frequency_two(self) -> None:
        model = HarmonicModel.from_vector(
            "NDVI", [1, 3], False, [0.4, 0.1, 0.0, 0.0, 0.0]
        )
        with pytest.raises(UnsupportedFrequencyError):
            derive_phase_amplitude_peak(model)

    @pytest.mark.unit
    def test_validate_request(self) -> None:
        validate_seasonality_request([1, 2, 3])
        with pytest.raises(UnsupportedFrequencyError, match="Add 2"):
            validate_seasonality_request([1, 3])


class TestMovingWindows:
    """Tests for fit_moving_windows() and synthesize_at_peak()."""

    @pytest.mark.unit
    def test_window_centres_and_validity(
        self, clean_observations: list[Observation]
    ) -> None:
        fits = fit_moving_windows(
            clean_observations, 2015, 2018, 1, frequencies=[1, 2], detrend=True
        )
        assert sorted(fits) == [2016, 2017]
        assert fits[2016]["NDVI"].validity == (2015.0, 2018.0)
        assert fits[2017]["swir2"].validity == (2016.0, 2019.0)
        assert isinstance(fits[2016], HarmonicFit)

    @pytest.mark.unit
    def test_window_only_uses_its_years(
        self, clean_observations: list[Observation]
    ) -> None:
        fits = fit_moving_windows(
            clean_observations, 2015, 2018, 1, frequencies=[1, 2], detrend=True
        )
        times = fits[2017].fitted.index.to_numpy()
        assert times.min() >= 2016.0
        assert times.max() < 2019.0

    @pytest.mark.unit
    def test_no_centre_year(self, clean_observations: list[Observation]) -> None:
        with pytest.raises(ConfigurationError, match="moving-window"):
            fit_moving_windows(
                clean_observations, 2015, 2016, 2, frequencies=[1], detrend=False
            )

    @pytest.mark.unit
    def test_synthesize_at_peak(self, clean_observations: list[Observation]) -> None:
        result = fit(clean_observations, frequencies=[1, 2], detrend=True)
        synth = synthesize_at_peak(result, 2016, "NDVI")
        season = derive_phase_amplitude_peak(result["NDVI"], year=2016)
        expected_date = 2016 + season.peak_julian_day / 365
        assert synth["date"] == pytest.approx(expected_date)
        assert synth["swir2"] == pytest.approx(predict(result["swir2"], expected_date))
        assert set(synth) == {"NDVI", "swir2", "date"}

    @pytest.mark.unit
    def test_synthesize_unknown_reference(
        self, clean_observations: list[Observation]
    ) -> None:
        result = fit(clean_observations, frequencies=[1, 2], detrend=True)
        with pytest.raises(KeyError):
            synthesize_at_peak(result, 2016, "EVI")
