"""
Bagging engine: one trained model per first-level posterior draw.

Ensembles are fitted once with num_draws = num_models. Training table i is
built entirely from draw i of every object's ensemble and handed to the
user's trainer; trained model i is stored at position i - 1.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Hashable, List, Optional, Sequence, Tuple

import pandas as pd

from bayesbag.bagging.transform import Transformation, get_transformation, transform_matches
from bayesbag.bayesian.fitting import PriorTable, ResolvedModelSpec, fit_ensembles, resolve_model_spec
from bayesbag.bayesian.object_model import Ensemble
from bayesbag.config import NormalDrawPolicy, settings
from bayesbag.constants import OUTCOME_COLUMN
from bayesbag.data.models import Match
from bayesbag.data.table import attribute_names
from bayesbag.errors import SchemaError, tag_draw_failure
from bayesbag.utils import (
    RandomSource,
    as_generator,
    get_logger,
    parallel_map,
    spawn_generators,
)

logger = get_logger("bagging.engine")

Trainer = Callable[[pd.DataFrame], Any]


@dataclass
class BaggedModels:
    """
    Result of build(): trained models plus what prediction needs to refit.

    trained_models[i] was trained on draw i + 1 of ensembles[object].
    """

    trained_models: List[Any]
    ensembles: Dict[Hashable, Ensemble]
    feature_columns: List[str]
    matches: List[Match]
    model_spec: ResolvedModelSpec
    transformation: Transformation
    priors: Optional[PriorTable] = None
    weighting: Any = None
    slots: Optional[Sequence[int]] = None
    normal_draw_policy: Optional[NormalDrawPolicy] = None
    test_ensembles: Dict[Tuple[Hashable, int], Ensemble] = field(default_factory=dict, repr=False)

    @property
    def num_models(self) -> int:
        return len(self.trained_models)

    @property
    def fitted_ensembles_per_object(self) -> Dict[Hashable, Ensemble]:
        return self.ensembles


def build(
    historical_matches: Sequence[Match],
    model_spec: Any,
    num_models: Optional[int],
    transformation: Any,
    trainer: Trainer,
    priors: Optional[PriorTable] = None,
    weighting: Any = None,
    slots: Optional[Sequence[int]] = None,
    rng: RandomSource = None,
    max_workers: Optional[int] = None,
    normal_draw_policy: Optional[NormalDrawPolicy] = None,
) -> BaggedModels:
    """
    Train num_models models, one per first-level posterior draw.

    Args:
        historical_matches: Matches with known outcomes
        model_spec: Family name, mapping, dependent descriptor or callable
        num_models: Ensemble size (None = configured default)
        transformation: Rule name, Transformation or callable
        trainer: callable(training_table) -> trained model
        priors: object_id -> {attribute -> prior}
        weighting: Time weighting (None = configured scheme)
        slots: Only fit objects from these slot numbers (1-based)
        rng: Random source
        max_workers: Thread pool width for the per-draw loop

    Returns:
        BaggedModels with num_models trained models

    Raises:
        SchemaError: Invalid spec, missing outcomes, inconsistent columns
        Exception: Whatever the trainer raised, tagged with draw_index
    """
    matches = list(historical_matches)
    if not matches:
        raise SchemaError("No historical matches to train on")
    without_outcome = [i for i, match in enumerate(matches) if not match.has_outcome]
    if without_outcome:
        raise SchemaError(
            f"{len(without_outcome)} historical matches have no outcome "
            f"(first at position {without_outcome[0]})"
        )

    num_models = settings.num_models if num_models is None else int(num_models)
    if num_models < 1:
        raise ValueError(f"num_models must be >= 1, got {num_models}")

    transformation = get_transformation(transformation)
    spec = resolve_model_spec(model_spec, attribute_names(matches))

    fit_rng, bag_rng = as_generator(rng).spawn(2)

    logger.info(
        f"Building {num_models} bagged models from {len(matches)} matches "
        f"({transformation!r})"
    )

    ensembles = fit_ensembles(
        matches,
        num_models,
        spec,
        priors=priors,
        weighting=weighting,
        slots=slots,
        rng=fit_rng,
        normal_draw_policy=normal_draw_policy,
        max_workers=max_workers,
    )

    def _train(item):
        draw_index, child = item
        table = transform_matches(matches, ensembles, draw_index, transformation, rng=child)
        logger.debug(f"Training model {draw_index} on {table.shape[0]}x{table.shape[1]} table")
        try:
            trained = trainer(table)
        except Exception as exc:
            tag_draw_failure(exc, "trainer", draw_index=draw_index)
            raise
        return list(table.columns), len(table), trained

    items = list(zip(range(1, num_models + 1), spawn_generators(bag_rng, num_models)))
    results = parallel_map(_train, items, max_workers=max_workers)

    columns = results[0][0]
    for draw_index, (cols, n_rows, _) in enumerate(results, start=1):
        if cols != columns:
            raise SchemaError(
                f"Training table {draw_index} has columns {cols}, expected {columns}"
            )
        if n_rows != len(matches):
            raise SchemaError(
                f"Training table {draw_index} has {n_rows} rows, expected {len(matches)}"
            )

    feature_columns = [col for col in columns if col != OUTCOME_COLUMN]
    logger.info(f"Trained {num_models} models on {len(feature_columns)} features")

    return BaggedModels(
        trained_models=[trained for _, _, trained in results],
        ensembles=ensembles,
        feature_columns=feature_columns,
        matches=matches,
        model_spec=spec,
        transformation=transformation,
        priors=priors,
        weighting=weighting,
        slots=slots,
        normal_draw_policy=normal_draw_policy,
    )


class BayesianBagger:
    """
    Configured two-level resampling-and-bagging engine.

    Usage:
        bagger = BayesianBagger("poisson", num_models=20)
        bagged = bagger.build(matches, trainer)
        records = bagger.predict(Match.new("A", "B"), predictor)
    """

    def __init__(
        self,
        model_spec: Any,
        num_models: Optional[int] = None,
        transformation: Any = None,
        priors: Optional[PriorTable] = None,
        weighting: Any = None,
        slots: Optional[Sequence[int]] = None,
        rng: RandomSource = None,
        max_workers: Optional[int] = None,
        normal_draw_policy: Optional[NormalDrawPolicy] = None,
    ):
        self.model_spec = model_spec
        self.num_models = settings.num_models if num_models is None else int(num_models)
        self.transformation = get_transformation(transformation)
        self.priors = priors
        self.weighting = weighting
        self.slots = slots
        self.rng = as_generator(rng)
        self.max_workers = max_workers
        self.normal_draw_policy = normal_draw_policy
        self.bagged: Optional[BaggedModels] = None

    def build(self, historical_matches: Sequence[Match], trainer: Trainer) -> BaggedModels:
        """Fit ensembles and train one model per draw."""
        self.bagged = build(
            historical_matches,
            self.model_spec,
            self.num_models,
            self.transformation,
            trainer,
            priors=self.priors,
            weighting=self.weighting,
            slots=self.slots,
            rng=self.rng,
            max_workers=self.max_workers,
            normal_draw_policy=self.normal_draw_policy,
        )
        return self.bagged

    def predict(
        self,
        new_match: Match,
        predictor: Callable[[Any, pd.DataFrame], Any],
        num_test_draws: Optional[int] = None,
    ):
        """Full num_models x num_test_draws prediction grid for one match."""
        from bayesbag.bagging.prediction import predict

        if self.bagged is None:
            raise ValueError("Bagger not built")
        return predict(
            self.bagged,
            new_match,
            predictor,
            num_test_draws=num_test_draws,
            rng=self.rng,
            max_workers=self.max_workers,
        )
