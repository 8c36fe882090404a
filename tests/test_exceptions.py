"""Tests for the pixeltrend exception hierarchy."""

from __future__ import annotations

import pytest

from pixeltrend.exceptions import (
    ConfigurationError,
    InsufficientDataError,
    InvalidFeatherWindowError,
    PixelError,
    PixelTrendError,
    SingularFitError,
    UnsupportedFrequencyError,
)

ALL_EXCEPTION_CLASSES = [
    PixelTrendError,
    ConfigurationError,
    UnsupportedFrequencyError,
    InvalidFeatherWindowError,
    PixelError,
    InsufficientDataError,
    SingularFitError,
]

CONFIGURATION_CLASSES = [
    UnsupportedFrequencyError,
    InvalidFeatherWindowError,
]

PIXEL_CLASSES = [
    InsufficientDataError,
    SingularFitError,
]


@pytest.mark.unit
class TestExceptionInheritance:
    """Verify the exception inheritance chain."""

    def test_base_inherits_from_exception(self) -> None:
        assert issubclass(PixelTrendError, Exception)

    @pytest.mark.parametrize(
        "exc_cls",
        CONFIGURATION_CLASSES,
        ids=lambda c: c.__name__,
    )
    def test_configuration_family(self, exc_cls: type[PixelTrendError]) -> None:
        assert issubclass(exc_cls, ConfigurationError)
        assert not issubclass(exc_cls, PixelError)

    @pytest.mark.parametrize(
        "exc_cls",
        PIXEL_CLASSES,
        ids=lambda c: c.__name__,
    )
    def test_pixel_family(self, exc_cls: type[PixelTrendError]) -> None:
        assert issubclass(exc_cls, PixelError)
        assert not issubclass(exc_cls, ConfigurationError)


@pytest.mark.unit
class TestThreePartMessage:
    """Verify the three-part message pattern (what, cause, fix)."""

    @pytest.mark.parametrize(
        "exc_cls",
        ALL_EXCEPTION_CLASSES,
        ids=lambda c: c.__name__,
    )
    def test_full_message(self, exc_cls: type[PixelTrendError]) -> None:
        exc = exc_cls(
            what="Operation failed",
            cause="Bad input",
            fix="Check your data",
        )
        msg = str(exc)
        assert "Operation failed" in msg
        assert "Cause: Bad input" in msg
        assert "Fix: Check your data" in msg

    @pytest.mark.parametrize(
        "exc_cls",
        ALL_EXCEPTION_CLASSES,
        ids=lambda c: c.__name__,
    )
    def test_what_only_message(self, exc_cls: type[PixelTrendError]) -> None:
        exc = exc_cls(what="Something broke")
        assert str(exc) == "Something broke"

    def test_message_omits_empty_cause(self) -> None:
        msg = str(PixelTrendError(what="Failed", fix="Retry"))
        assert "Cause:" not in msg
        assert "Fix: Retry" in msg

    def test_multiline_format(self) -> None:
        exc = SingularFitError(
            what="Cannot fit harmonic model",
            cause="Design matrix rank 1 < 3 columns",
            fix="Provide observations at more distinct times",
        )
        lines = str(exc).split("\n")
        assert lines[0] == "Cannot fit harmonic model"
        assert lines[1] == "Cause: Design matrix rank 1 < 3 columns"
        assert lines[2] == "Fix: Provide observations at more distinct times"


@pytest.mark.unit
class TestExceptionAttributes:
    """Verify attributes are stored and accessible."""

    @pytest.mark.parametrize(
        "exc_cls",
        ALL_EXCEPTION_CLASSES,
        ids=lambda c: c.__name__,
    )
    def test_attributes_stored(self, exc_cls: type[PixelTrendError]) -> None:
        exc = exc_cls(what="W", cause="C", fix="F")
        assert exc.what == "W"
        assert exc.cause == "C"
        assert exc.fix == "F"

    def test_default_cause_and_fix_are_empty(self) -> None:
        exc = PixelTrendError(what="W")
        assert exc.cause == ""
        assert exc.fix == ""


@pytest.mark.unit
class TestExceptionCatchability:
    """Verify batch code can separate the two families."""

    def test_pixel_error_caught_as_pixel_error(self) -> None:
        with pytest.raises(PixelError):
            raise InsufficientDataError(what="3 valid observations for 5 unknowns")

    def test_feather_error_caught_as_configuration_error(self) -> None:
        with pytest.raises(ConfigurationError):
            raise InvalidFeatherWindowError(what="Invalid feathering window")
