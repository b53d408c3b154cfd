"""
Transformations: object models of a match's participants -> feature vector.

Column names are <attribute>_<slot>_<suffix>, ordered by slot and then by
attribute insertion order of the object model. The order is a contract:
tables used to train a model and tables used to query it must match.
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, ClassVar, Dict, Hashable, List, Mapping, Optional, Sequence

import numpy as np
import pandas as pd

from bayesbag.bayesian.object_model import AttributeKey, Ensemble, ObjectModel
from bayesbag.config import settings
from bayesbag.constants import OUTCOME_COLUMN, TransformationEnum
from bayesbag.data.models import Match
from bayesbag.errors import DataSufficiencyError, SchemaError
from bayesbag.utils import RandomSource, as_generator, get_logger

logger = get_logger("bagging.transform")

SlotModels = Mapping[int, ObjectModel]


def _flatten(key: AttributeKey, value: Any, slot: int, suffix: str) -> tuple[List[str], List[float]]:
    names = key if isinstance(key, tuple) else (key,)
    values = np.asarray(value, dtype=float).reshape(-1)
    if values.shape[0] != len(names):
        raise SchemaError(
            f"Attribute model for {key!r} produced {values.shape[0]} values, "
            f"expected {len(names)}"
        )
    return [f"{name}_{slot}_{suffix}" for name in names], values.tolist()


class Transformation(ABC):
    """Rule mapping {slot: object model} to one feature vector."""

    name: ClassVar[str] = ""
    stochastic: ClassVar[bool] = False

    @property
    def suffix(self) -> str:
        return self.name

    @abstractmethod
    def summarize(self, model: ObjectModel, rng: np.random.Generator) -> Mapping[AttributeKey, Any]:
        """Per-attribute values for one object model."""

    def __call__(self, object_models_by_slot: SlotModels, rng: RandomSource = None) -> pd.Series:
        rng = as_generator(rng) if self.stochastic else None
        columns: List[str] = []
        values: List[float] = []
        for slot in sorted(object_models_by_slot):
            model = object_models_by_slot[slot]
            for key, value in self.summarize(model, rng).items():
                names, flat = _flatten(key, value, slot, self.suffix)
                columns.extend(names)
                values.extend(flat)
        return pd.Series(values, index=columns, dtype=float)

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class MeansTransformation(Transformation):
    """Posterior-draw means; deterministic."""

    name = TransformationEnum.MEANS.value

    @property
    def suffix(self) -> str:
        return "mean"

    def summarize(self, model, rng):
        return model.mean()


class SampleTransformation(Transformation):
    """One realization per attribute; re-drawn on every call."""

    name = TransformationEnum.SAMPLE.value
    stochastic = True

    def summarize(self, model, rng):
        return {key: np.asarray(value)[0] for key, value in model.sample(1, rng=rng).items()}


class QuantileTransformation(Transformation):
    """q-th quantile of each attribute's modeled distribution."""

    name = TransformationEnum.QUANTILE.value

    def __init__(self, q: Optional[float] = None):
        q = settings.quantile if q is None else float(q)
        if not 0.0 < q < 1.0:
            raise ValueError(f"Quantile must be in (0, 1), got {q}")
        self.q = q

    @property
    def suffix(self) -> str:
        return f"q{self.q:g}"

    def summarize(self, model, rng):
        for key, attribute_model in model.items():
            if not callable(getattr(attribute_model, "quantile", None)):
                raise SchemaError(
                    f"Attribute model for {key!r} ({type(attribute_model).__name__}) "
                    "does not expose a quantile function"
                )
        return model.quantile(self.q)

    def __repr__(self) -> str:
        return f"QuantileTransformation(q={self.q})"


class FunctionTransformation(Transformation):
    """
    Wraps a user callable(object_models_by_slot, rng).

    The callable may return a Series, a mapping of column -> value, or a
    plain sequence (columns are then named x0, x1, ...).
    """

    name = "custom"
    stochastic = True

    def __init__(self, func: Callable[[SlotModels, np.random.Generator], Any]):
        self.func = func

    def summarize(self, model, rng):  # pragma: no cover - __call__ is overridden
        raise NotImplementedError

    def __call__(self, object_models_by_slot, rng=None):
        result = self.func(object_models_by_slot, as_generator(rng))
        if isinstance(result, pd.Series):
            return result.astype(float)
        if isinstance(result, Mapping):
            return pd.Series(dict(result), dtype=float)
        values = np.asarray(result, dtype=float).reshape(-1)
        return pd.Series(values, index=[f"x{i}" for i in range(values.shape[0])])

    def __repr__(self) -> str:
        return f"FunctionTransformation({getattr(self.func, '__name__', self.func)!r})"


def get_transformation(transformation: Any = None) -> Transformation:
    """
    Resolve a transformation argument.

    Accepts None (configured default), a rule name ("means", "sample",
    "quantile" or "quantile:<q>"), a Transformation, or a callable.
    """
    if transformation is None:
        transformation = settings.transformation
    if isinstance(transformation, Transformation):
        return transformation
    if isinstance(transformation, str):
        name, _, arg = transformation.strip().lower().partition(":")
        if name == TransformationEnum.MEANS.value:
            return MeansTransformation()
        if name == TransformationEnum.SAMPLE.value:
            return SampleTransformation()
        if name == TransformationEnum.QUANTILE.value:
            return QuantileTransformation(float(arg) if arg else None)
        raise SchemaError(f"Unknown transformation '{transformation}'")
    if callable(transformation):
        return FunctionTransformation(transformation)
    raise SchemaError(f"Cannot interpret transformation {transformation!r}")


# =============================================================================
# Tables
# =============================================================================

def slot_models(
    match: Match,
    ensembles: Mapping[Hashable, Ensemble],
    draw_index: int,
) -> Dict[int, ObjectModel]:
    """Draw draw_index of every participant's ensemble, keyed by slot number."""
    models = {}
    for k, object_id in enumerate(match.object_ids, start=1):
        try:
            ensemble = ensembles[object_id]
        except KeyError:
            raise DataSufficiencyError(
                f"No fitted ensemble for object {object_id!r}",
                object_id=object_id,
            ) from None
        models[k] = ensemble.draw(draw_index)
    return models


def transform_matches(
    matches: Sequence[Match],
    ensembles: Mapping[Hashable, Ensemble],
    draw_index: int,
    transformation: Transformation,
    rng: RandomSource = None,
    include_outcome: bool = True,
) -> pd.DataFrame:
    """
    Build one table from draw draw_index of every object's ensemble.

    Raises:
        SchemaError: Rows disagree on feature columns
    """
    rng = as_generator(rng)
    rows = []
    columns = None
    for match in matches:
        row = transformation(slot_models(match, ensembles, draw_index), rng=rng)
        if columns is None:
            columns = list(row.index)
        elif list(row.index) != columns:
            raise SchemaError(
                f"Feature columns differ between matches: {columns} vs {list(row.index)}"
            )
        rows.append(row.to_numpy())

    table = pd.DataFrame(rows, columns=columns)
    if include_outcome:
        table[OUTCOME_COLUMN] = [match.y for match in matches]
    return table
