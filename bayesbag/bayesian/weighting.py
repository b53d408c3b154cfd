"""
Time weighting of historical measurements.

Older participations can be down-weighted before they reach the attribute
model fit. Ages are measured from a reference time (default: the latest
time in the object's history); datetime-like times are measured in days.
"""

from dataclasses import dataclass
from typing import Any, Callable, Optional, Sequence

import numpy as np
import pandas as pd

from bayesbag.config import WeightingScheme, settings
from bayesbag.errors import SchemaError

WeightFunction = Callable[[Sequence[Any]], np.ndarray]


def ages(times: Sequence[Any], reference: Optional[Any] = None) -> np.ndarray:
    """Age of each time relative to reference (days for datetimes)."""
    series = pd.Series(list(times))
    if series.isna().any():
        raise SchemaError("Time weighting requires a time for every measurement")

    if pd.api.types.is_numeric_dtype(series):
        values = series.astype(float)
        ref = values.max() if reference is None else float(reference)
        return (ref - values).to_numpy()

    try:
        stamps = pd.to_datetime(series)
    except (TypeError, ValueError) as exc:
        raise SchemaError(f"Cannot interpret match times as numbers or dates: {exc}") from exc
    ref = stamps.max() if reference is None else pd.Timestamp(reference)
    return ((ref - stamps).dt.total_seconds() / 86400.0).to_numpy()


@dataclass(frozen=True)
class TimeWeighting:
    """Configured weighting scheme."""

    scheme: WeightingScheme = WeightingScheme.NONE
    half_life: float = 365.0
    window: float = 730.0
    reference: Optional[Any] = None

    def __post_init__(self):
        object.__setattr__(self, "scheme", WeightingScheme(self.scheme))
        if self.half_life <= 0 or self.window <= 0:
            raise ValueError("half_life and window must be positive")

    @classmethod
    def from_settings(cls) -> "TimeWeighting":
        return cls(
            scheme=settings.weighting_scheme,
            half_life=settings.half_life,
            window=settings.window,
        )

    @property
    def is_active(self) -> bool:
        return self.scheme != WeightingScheme.NONE

    def weights(self, times: Sequence[Any]) -> np.ndarray:
        if not self.is_active:
            return np.ones(len(times))

        age = np.clip(ages(times, self.reference), 0.0, None)
        if self.scheme == WeightingScheme.EXPONENTIAL:
            return 0.5 ** (age / self.half_life)
        return np.clip(1.0 - age / self.window, 0.0, None)

    def __call__(self, times: Sequence[Any]) -> np.ndarray:
        return self.weights(times)


def resolve_weighting(
    weighting: Optional[TimeWeighting | WeightFunction | str],
) -> Optional[WeightFunction]:
    """
    Normalize the weighting argument.

    None uses the configured scheme; a scheme name builds a TimeWeighting
    with configured parameters; a callable is used as-is. Returns None when
    no weighting applies.
    """
    if weighting is None:
        weighting = TimeWeighting.from_settings()
    elif isinstance(weighting, (str, WeightingScheme)):
        weighting = TimeWeighting(
            scheme=WeightingScheme(weighting),
            half_life=settings.half_life,
            window=settings.window,
        )

    if isinstance(weighting, TimeWeighting) and not weighting.is_active:
        return None
    if not callable(weighting):
        raise SchemaError(f"Invalid weighting: {weighting!r}")
    return weighting
