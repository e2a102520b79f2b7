"""Error types raised by the recommendation services."""

from __future__ import annotations


class GenerationFailed(RuntimeError):
    """A generative model call errored or produced unusable output."""


class PersistenceFailed(RuntimeError):
    """Reading or writing rated movies failed."""


class NoRatedMoviesError(ValueError):
    """Preference analysis was requested without any rated movies."""

    def __init__(self, message: str = "Please rate some movies first to analyze your preferences.") -> None:
        super().__init__(message)


class PreferenceSummaryMissing(ValueError):
    """Recommendations were requested before preferences were analyzed."""

    def __init__(self, message: str = "Please analyze your preferences first before getting recommendations.") -> None:
        super().__init__(message)


class RatingsChangedError(RuntimeError):
    """Ratings changed while a result was being computed, so it was discarded."""

    def __init__(self, message: str = "Your ratings changed while this was running. Please try again.") -> None:
        super().__init__(message)
