"""
Prediction engine: full cross-product of bagged models and test draws.

For a new match, every participant gets a fresh ensemble of num_test_draws
object models fitted on its historical measurements only. Test set k is the
feature row built from draw k; every trained model j is evaluated on every
test set k. Records come back row-major by (j, k).
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, Hashable, List, Optional, Sequence

import numpy as np
import pandas as pd

from bayesbag.bagging.engine import BaggedModels
from bayesbag.bagging.transform import get_transformation, slot_models
from bayesbag.bayesian.fitting import fit_ensembles
from bayesbag.bayesian.object_model import Ensemble
from bayesbag.config import settings
from bayesbag.data.models import Match
from bayesbag.errors import DataSufficiencyError, SchemaError, tag_draw_failure
from bayesbag.utils import (
    RandomSource,
    as_generator,
    get_logger,
    parallel_map,
    spawn_generators,
)

logger = get_logger("bagging.prediction")

Predictor = Callable[[Any, pd.DataFrame], Any]


@dataclass(frozen=True)
class PredictionRecord:
    """One (bagged model, test draw) prediction with 1-based provenance."""

    predictions: Any
    idx_of_bagged_model: int
    idx_of_test_set: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "predictions": self.predictions,
            "idx_of_bagged_model": self.idx_of_bagged_model,
            "idx_of_test_set": self.idx_of_test_set,
        }


def _test_ensembles(
    bagged: BaggedModels,
    object_ids: Sequence[Hashable],
    num_test_draws: int,
    rng: np.random.Generator,
    reuse: bool,
    max_workers: Optional[int],
) -> Dict[Hashable, Ensemble]:
    """Fit (or fetch cached) test ensembles for the given objects."""
    wanted = list(dict.fromkeys(object_ids))
    if reuse:
        missing = [o for o in wanted if (o, num_test_draws) not in bagged.test_ensembles]
    else:
        missing = wanted

    fitted = {}
    if missing:
        fitted = fit_ensembles(
            bagged.matches,
            num_test_draws,
            bagged.model_spec,
            priors=bagged.priors,
            objects=missing,
            slots=bagged.slots,
            weighting=bagged.weighting,
            rng=rng,
            normal_draw_policy=bagged.normal_draw_policy,
            max_workers=max_workers,
        )
        if reuse:
            for object_id, ensemble in fitted.items():
                bagged.test_ensembles[(object_id, num_test_draws)] = ensemble

    if not reuse:
        return fitted
    return {o: bagged.test_ensembles[(o, num_test_draws)] for o in wanted}


def predict(
    bagged: BaggedModels,
    new_match: Match,
    predictor: Predictor,
    transformation: Any = None,
    num_test_draws: Optional[int] = None,
    rng: RandomSource = None,
    max_workers: Optional[int] = None,
    reuse_test_ensembles: Optional[bool] = None,
) -> List[PredictionRecord]:
    """
    Predict one new match with every bagged model on every test draw.

    Args:
        bagged: Result of build()
        new_match: Match whose participants are scored; its own
            measurements and outcome are ignored
        predictor: callable(trained_model, feature_table) -> prediction,
            where feature_table is a one-row DataFrame without outcome
        transformation: Defaults to the transformation used for training
        num_test_draws: Second-level draws (None = configured or num_models)
        rng: Random source
        max_workers: Thread pool width for the grid
        reuse_test_ensembles: Cache test ensembles on bagged

    Returns:
        num_models * num_test_draws records, row-major by
        (idx_of_bagged_model, idx_of_test_set)

    Raises:
        DataSufficiencyError: A participant never appears in the history
        SchemaError: Feature columns differ from the training tables
        Exception: Whatever the predictor raised, tagged with
            bagged_model_index and test_set_index
    """
    transformation = bagged.transformation if transformation is None else get_transformation(transformation)
    if num_test_draws is None:
        num_test_draws = settings.num_test_draws or bagged.num_models
    num_test_draws = int(num_test_draws)
    if num_test_draws < 1:
        raise ValueError(f"num_test_draws must be >= 1, got {num_test_draws}")
    if reuse_test_ensembles is None:
        reuse_test_ensembles = settings.reuse_test_ensembles

    fit_rng, draw_rng = as_generator(rng).spawn(2)

    ensembles = _test_ensembles(
        bagged,
        new_match.object_ids,
        num_test_draws,
        fit_rng,
        reuse_test_ensembles,
        max_workers,
    )

    test_sets = []
    for k, child in enumerate(spawn_generators(draw_rng, num_test_draws), start=1):
        row = transformation(slot_models(new_match, ensembles, k), rng=child)
        if list(row.index) != bagged.feature_columns:
            raise SchemaError(
                f"Test set {k} has columns {list(row.index)}, "
                f"expected {bagged.feature_columns}"
            )
        test_sets.append(row.to_frame().T.reset_index(drop=True))

    def _score(cell):
        j, k = cell
        try:
            prediction = predictor(bagged.trained_models[j - 1], test_sets[k - 1])
        except Exception as exc:
            tag_draw_failure(exc, "predictor", bagged_model_index=j, test_set_index=k)
            raise
        return PredictionRecord(prediction, j, k)

    cells = [
        (j, k)
        for j in range(1, bagged.num_models + 1)
        for k in range(1, num_test_draws + 1)
    ]
    records = parallel_map(_score, cells, max_workers=max_workers)

    logger.info(
        f"Predicted match {new_match.match_id!r}: "
        f"{bagged.num_models} models x {num_test_draws} test sets"
    )
    return records


def predict_matches(
    bagged: BaggedModels,
    matches: Sequence[Match],
    predictor: Predictor,
    transformation: Any = None,
    num_test_draws: Optional[int] = None,
    rng: RandomSource = None,
    max_workers: Optional[int] = None,
    on_error: str = "raise",
) -> List[Optional[List[PredictionRecord]]]:
    """
    predict() for several new matches, each with its own random stream.

    A DataSufficiencyError only concerns the match that raised it. With
    on_error="raise" it propagates immediately; with on_error="skip" the
    match's entry is None and the remaining matches are still predicted.
    Other exceptions always propagate.
    """
    if on_error not in ("raise", "skip"):
        raise ValueError(f"on_error must be 'raise' or 'skip', got {on_error!r}")

    matches = list(matches)
    results: List[Optional[List[PredictionRecord]]] = []
    for match, child in zip(matches, spawn_generators(rng, len(matches))):
        try:
            records = predict(
                bagged,
                match,
                predictor,
                transformation=transformation,
                num_test_draws=num_test_draws,
                rng=child,
                max_workers=max_workers,
            )
        except DataSufficiencyError as exc:
            if on_error == "raise":
                raise
            logger.warning(
                f"Skipping match {match.match_id!r}: {exc}",
                extra={"object_id": exc.object_id, "attribute": exc.attribute},
            )
            records = None
        results.append(records)
    return results


# =============================================================================
# Output Helpers
# =============================================================================

def _scalar(value: Any) -> float:
    arr = np.asarray(value, dtype=float).reshape(-1)
    if arr.shape[0] != 1:
        raise ValueError(f"Expected a scalar prediction, got shape {np.shape(value)}")
    return float(arr[0])


def predictions_frame(records: Sequence[PredictionRecord]) -> pd.DataFrame:
    """One row per record."""
    return pd.DataFrame(
        [r.to_dict() for r in records],
        columns=["predictions", "idx_of_bagged_model", "idx_of_test_set"],
    )


def prediction_grid(records: Sequence[PredictionRecord]) -> np.ndarray:
    """
    num_models x num_test_draws array of scalar predictions.

    Raises:
        ValueError: Records do not cover a full grid exactly once
    """
    if not records:
        raise ValueError("No prediction records")

    n_models = max(r.idx_of_bagged_model for r in records)
    n_tests = max(r.idx_of_test_set for r in records)
    if len(records) != n_models * n_tests:
        raise ValueError(
            f"{len(records)} records do not form a {n_models}x{n_tests} grid"
        )

    grid = np.full((n_models, n_tests), np.nan)
    filled = np.zeros((n_models, n_tests), dtype=bool)
    for r in records:
        j, k = r.idx_of_bagged_model, r.idx_of_test_set
        if j < 1 or k < 1:
            raise ValueError(f"Record indices must be 1-based, got ({j}, {k})")
        if filled[j - 1, k - 1]:
            raise ValueError(f"Duplicate record for cell ({j}, {k})")
        filled[j - 1, k - 1] = True
        grid[j - 1, k - 1] = _scalar(r.predictions)
    return grid


def summarize_predictions(
    records: Sequence[PredictionRecord],
    ci: float = 0.9,
) -> Dict[str, Any]:
    """
    Summarize the prediction grid.

    Returns:
        Dictionary with mean, median, std, central credible interval and the
        spread attributable to model uncertainty (between bagged models) and
        estimation uncertainty (between test draws)
    """
    if not 0.0 < ci < 1.0:
        raise ValueError(f"ci must be in (0, 1), got {ci}")

    grid = prediction_grid(records)
    values = grid.reshape(-1)
    tail = (1.0 - ci) / 2.0 * 100.0

    return {
        "n_models": grid.shape[0],
        "n_test_draws": grid.shape[1],
        "mean": float(np.mean(values)),
        "median": float(np.median(values)),
        "std": float(np.std(values)),
        "ci": (
            float(np.percentile(values, tail)),
            float(np.percentile(values, 100.0 - tail)),
        ),
        "between_model_var": float(np.var(grid.mean(axis=1))),
        "between_draw_var": float(np.var(grid.mean(axis=0))),
    }
