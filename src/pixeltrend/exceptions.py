"""pixeltrend exception hierarchy.

All exceptions follow a three-part message pattern: what failed,
likely cause, and suggested fix.

Two families sit under the base class:

* ``ConfigurationError`` and its subclasses signal a caller bug. They are
  raised once, before any per-pixel work starts, and are fatal to a batch.
* ``PixelError`` and its subclasses signal a data condition local to one
  pixel (or one band of one pixel). Batch callers catch them and emit a
  no-data value for that pixel.
"""

from __future__ import annotations


class PixelTrendError(Exception):
    """Base exception for all pixeltrend errors.

    Args:
        what: Description of what failed.
        cause: Likely cause of the failure.
        fix: Suggested action to resolve the issue.

    Example:
        >>> raise PixelTrendError(
        ...     what="Operation failed",
        ...     cause="Unexpected internal state",
        ...     fix="Please report this issue",
        ... )
    """

    def __init__(
        self,
        what: str,
        cause: str = "",
        fix: str = "",
    ) -> None:
        """Initialize with structured error context.

        Args:
            what: Description of what failed.
            cause: Likely cause of the failure.
            fix: Suggested action to resolve the issue.
        """
        self.what = what
        self.cause = cause
        self.fix = fix
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        """Build the multi-line error message from parts.

        Returns:
            Formatted message with optional Cause and Fix lines.
        """
        parts = [self.what]
        if self.cause:
            parts.append(f"Cause: {self.cause}")
        if self.fix:
            parts.append(f"Fix: {self.fix}")
        return "\n".join(parts)


class ConfigurationError(PixelTrendError):
    """Raised for invalid parameters or parameter files.

    Example:
        >>> raise ConfigurationError(
        ...     what="Unknown band 'NDXI'",
        ...     cause="Band is not in the band registry",
        ...     fix="Pass a BandSpec override for custom bands",
        ... )
    """


class UnsupportedFrequencyError(ConfigurationError):
    """Raised when seasonality metrics are requested without frequency 2.

    Example:
        >>> raise UnsupportedFrequencyError(
        ...     what="Cannot derive phase/amplitude/peak",
        ...     cause="Model frequencies are [1, 3]",
        ...     fix="Include 2 in the harmonic frequencies",
        ... )
    """


class InvalidFeatherWindowError(ConfigurationError):
    """Raised when a feathering window is inverted or outside coverage.

    Example:
        >>> raise InvalidFeatherWindowError(
        ...     what="Invalid feathering window 2021.0-2014.0",
        ...     cause="Feather start is not before feather end",
        ...     fix="Swap the bounds",
        ... )
    """


class PixelError(PixelTrendError):
    """Raised for per-pixel numerical failures.

    Never fatal to a batch: the batch layer substitutes no-data.
    """


class InsufficientDataError(PixelError):
    """Raised when a band has fewer valid samples than model unknowns.

    Example:
        >>> raise InsufficientDataError(
        ...     what="Cannot fit harmonic model for band 'NDVI'",
        ...     cause="3 valid observations for 5 unknowns",
        ... )
    """


class SingularFitError(PixelError):
    """Raised when the harmonic design matrix is rank deficient.

    Example:
        >>> raise SingularFitError(
        ...     what="Cannot fit harmonic model for band 'NDVI'",
        ...     cause="Design matrix rank 1 < 5 columns",
        ... )
    """
