"""
Shared utility functions.

Includes:
- Logging setup
- Random source helpers
- Parallel map over independent iterations
- Keyword filtering for user-supplied callables
"""

# Re-export logging utilities for convenience
from bayesbag.utils.logging import setup_logging, get_logger

import inspect
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, TypeVar

import numpy as np

from bayesbag.config import settings

T = TypeVar("T")
R = TypeVar("R")

RandomSource = np.random.Generator | int | None


# =============================================================================
# Random Sources
# =============================================================================

def as_generator(rng: RandomSource = None) -> np.random.Generator:
    """
    Coerce a random source into a numpy Generator.

    None falls back to the configured seed so that runs are reproducible
    by default; an int is used as a seed; a Generator is passed through.
    """
    if isinstance(rng, np.random.Generator):
        return rng
    if rng is None:
        rng = settings.random_seed
    return np.random.default_rng(rng)


def spawn_generators(rng: RandomSource, n: int) -> List[np.random.Generator]:
    """
    Derive n independent child generators.

    Each parallel branch gets its own stream, so results do not depend on
    scheduling order.
    """
    if n <= 0:
        return []
    return as_generator(rng).spawn(n)


# =============================================================================
# Execution
# =============================================================================

def parallel_map(
    func: Callable[[T], R],
    items: Iterable[T],
    max_workers: Optional[int] = None,
) -> List[R]:
    """
    Apply func to every item, preserving input order.

    Runs serially when max_workers is 1. Exceptions raised by func
    propagate unchanged to the caller.
    """
    items = list(items)
    max_workers = max_workers or settings.max_workers

    if max_workers <= 1 or len(items) <= 1:
        return [func(item) for item in items]

    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        return list(executor.map(func, items))


def accepted_kwargs(func: Callable, kwargs: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Subset of kwargs that func accepts by name.

    User-supplied families may implement only the minimal
    fit(measurements, num_draws, prior) / sample(count) signatures; optional
    keywords they do not declare are dropped. A **kwargs parameter accepts
    everything.
    """
    try:
        params = inspect.signature(func).parameters
    except (TypeError, ValueError):
        return dict(kwargs)
    if any(p.kind == inspect.Parameter.VAR_KEYWORD for p in params.values()):
        return dict(kwargs)
    return {key: value for key, value in kwargs.items() if key in params}


# =============================================================================
# Math Helpers
# =============================================================================

def is_missing(value: Any) -> bool:
    """True for None and NaN scalars."""
    if value is None:
        return True
    try:
        return bool(np.isnan(value))
    except (TypeError, ValueError):
        return False
