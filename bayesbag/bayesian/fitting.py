"""
Model fitting orchestrator: first-level ensembles per object.

For every object, collects its measurements across all historical
participations, optionally time-weights them, and fits the attribute model
family chosen by the model spec to produce num_draws object models.

Model spec forms:
    "poisson"                               one family for every attribute
    {"P2M": "poisson", "FT": "bernoulli"}   family per attribute (a tuple key
                                            selects a joint family)
    {"dependent": True, "type": "mvn"}      one joint model over all (or the
                                            listed) attributes
    callable(table, num_draws)              custom fitting; must return
                                            num_draws object models
"""

from dataclasses import dataclass
from typing import (
    Any,
    Callable,
    Dict,
    Hashable,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
)

import numpy as np
import pandas as pd
from pydantic import BaseModel, ValidationError

from bayesbag.bayesian.attribute import Normal, get_family, is_multivariate
from bayesbag.bayesian.object_model import AttributeKey, Ensemble, ObjectModel
from bayesbag.bayesian.weighting import TimeWeighting, WeightFunction, resolve_weighting
from bayesbag.config import NormalDrawPolicy
from bayesbag.constants import TIME_COLUMN
from bayesbag.data.models import Match
from bayesbag.data.table import attribute_names, measurement_table, object_ids
from bayesbag.errors import DataSufficiencyError, SchemaError, tag_draw_failure
from bayesbag.utils import (
    RandomSource,
    accepted_kwargs,
    get_logger,
    parallel_map,
    spawn_generators,
)

logger = get_logger("bayesian.fitting")

PriorTable = Mapping[Hashable, Mapping[AttributeKey, Any]]
CustomFit = Callable[[pd.DataFrame, int], Sequence[Any]]


# =============================================================================
# Model Spec
# =============================================================================

class DependentSpec(BaseModel):
    """Descriptor for one joint model over several attributes."""

    dependent: bool
    type: str
    attributes: Optional[List[str]] = None


@dataclass(frozen=True)
class AttributeGroup:
    """One attribute model slot of an object model."""

    key: AttributeKey
    family: type

    @property
    def names(self) -> Tuple[str, ...]:
        return self.key if isinstance(self.key, tuple) else (self.key,)


@dataclass(frozen=True)
class ResolvedModelSpec:
    """Model spec checked against the data's attributes."""

    groups: Tuple[AttributeGroup, ...] = ()
    custom: Optional[CustomFit] = None

    @property
    def attribute_names(self) -> List[str]:
        names = []
        for group in self.groups:
            names.extend(group.names)
        return names


def _check_present(names: Sequence[str], available: Sequence[str]) -> None:
    missing = [name for name in names if name not in available]
    if missing:
        raise SchemaError(
            f"Attribute(s) {missing} referenced in model spec are absent from the data "
            f"(available: {list(available)})"
        )


def _uniform(family: type, available: Sequence[str]) -> ResolvedModelSpec:
    if not available:
        raise SchemaError("Match data has no attribute columns to model")
    if is_multivariate(family):
        return ResolvedModelSpec(groups=(AttributeGroup(tuple(available), family),))
    return ResolvedModelSpec(
        groups=tuple(AttributeGroup(name, family) for name in available)
    )


def resolve_model_spec(model_spec: Any, available: Sequence[str]) -> ResolvedModelSpec:
    """
    Resolve a model spec against the attributes present in the data.

    Raises:
        SchemaError: Unknown family, attribute absent from the data, or a
            non-joint family requested for a joint group
    """
    if isinstance(model_spec, ResolvedModelSpec):
        _check_present(model_spec.attribute_names, available)
        return model_spec

    if model_spec is None:
        raise SchemaError("A model spec is required")

    if isinstance(model_spec, (str, type)):
        return _uniform(get_family(model_spec), available)

    if isinstance(model_spec, Mapping) and "dependent" in model_spec:
        try:
            descriptor = DependentSpec(**model_spec)
        except ValidationError as exc:
            raise SchemaError(f"Invalid dependent model spec: {exc}") from exc

        family = get_family(descriptor.type)
        if not descriptor.dependent:
            return _uniform(family, available)
        if not is_multivariate(family):
            raise SchemaError(f"Family '{descriptor.type}' cannot model attributes jointly")

        names = descriptor.attributes or list(available)
        _check_present(names, available)
        return ResolvedModelSpec(groups=(AttributeGroup(tuple(names), family),))

    if isinstance(model_spec, Mapping):
        groups = []
        for key, family_name in model_spec.items():
            family = get_family(family_name)
            if isinstance(key, (tuple, list)):
                key = tuple(key)
                if not is_multivariate(family):
                    raise SchemaError(f"Family '{family_name}' cannot model {key} jointly")
            elif is_multivariate(family):
                key = (key,)
            group = AttributeGroup(key, family)
            _check_present(group.names, available)
            groups.append(group)

        if not groups:
            raise SchemaError("Model spec mapping is empty")

        flat = [name for group in groups for name in group.names]
        if len(flat) != len(set(flat)):
            raise SchemaError(f"Attribute listed more than once in model spec: {flat}")
        return ResolvedModelSpec(groups=tuple(groups))

    if callable(model_spec):
        return ResolvedModelSpec(custom=model_spec)

    raise SchemaError(f"Cannot interpret model spec {model_spec!r}")


# =============================================================================
# Per-Object Fitting
# =============================================================================

def _lookup_prior(priors: Optional[PriorTable], object_id: Hashable, key: AttributeKey) -> Any:
    if not priors:
        return None
    per_object = priors.get(object_id)
    if not per_object:
        return None
    if key in per_object:
        return per_object[key]
    if isinstance(key, tuple) and len(key) == 1:
        return per_object.get(key[0])
    return None


def _as_object_model(candidate: Any, object_id: Hashable, draw_index: int) -> ObjectModel:
    if isinstance(candidate, ObjectModel):
        if candidate.draw_index is None:
            candidate.draw_index = draw_index
        return candidate.freeze()
    if isinstance(candidate, Mapping):
        return ObjectModel(object_id, candidate, draw_index=draw_index).freeze()
    raise TypeError(
        f"Custom fitting must return object models or mappings, got {type(candidate).__name__}"
    )


def _fit_custom(
    custom: CustomFit,
    table: pd.DataFrame,
    object_id: Hashable,
    num_draws: int,
) -> Ensemble:
    try:
        fitted = custom(table, num_draws)
    except Exception as exc:
        tag_draw_failure(exc, "custom model fitting", object_id=object_id)
        raise

    fitted = list(fitted)
    if len(fitted) != num_draws:
        raise ValueError(
            f"Custom fitting returned {len(fitted)} object models for {object_id!r}, "
            f"expected {num_draws}"
        )
    return Ensemble(
        object_id,
        [_as_object_model(m, object_id, i) for i, m in enumerate(fitted, start=1)],
    )


def fit_object(
    table: pd.DataFrame,
    object_id: Hashable,
    num_draws: int,
    spec: ResolvedModelSpec,
    priors: Optional[PriorTable] = None,
    weighting: Optional[WeightFunction] = None,
    rng: RandomSource = None,
    normal_draw_policy: Optional[NormalDrawPolicy] = None,
) -> Ensemble:
    """
    Fit num_draws object models from one object's measurement table.

    Raises:
        DataSufficiencyError: The object has no measurements for a modeled
            attribute and no prior for it
        SchemaError: Weighting requested but the table has no times
    """
    if spec.custom is not None:
        return _fit_custom(spec.custom, table, object_id, num_draws)

    weights = None
    if weighting is not None:
        if TIME_COLUMN not in table.columns:
            raise SchemaError("Time weighting requested but matches carry no time")
        weights = np.asarray(weighting(table[TIME_COLUMN].tolist()), dtype=float)

    per_group = []
    for group in spec.groups:
        columns = list(group.names)
        values = table[columns].to_numpy(dtype=float)
        if not is_multivariate(group.family):
            values = values[:, 0]

        prior = _lookup_prior(priors, object_id, group.key)
        observed = ~np.isnan(values) if values.ndim == 1 else ~np.isnan(values).any(axis=1)
        if not observed.any() and prior is None:
            raise DataSufficiencyError(
                f"Object {object_id!r} has no historical measurements of {group.key!r}",
                object_id=object_id,
                attribute=group.key,
            )

        options = {"prior": prior, "rng": rng}
        if weights is not None:
            options["weights"] = weights
        if issubclass(group.family, Normal):
            options["policy"] = normal_draw_policy

        accepted = accepted_kwargs(group.family.fit, options)
        if "weights" in options and "weights" not in accepted:
            raise SchemaError(
                f"Time weighting requested but {group.family.__name__}.fit "
                "does not accept weights"
            )

        try:
            draws = group.family.fit(values, num_draws=num_draws, **accepted)
        except DataSufficiencyError as exc:
            exc.object_id = object_id
            exc.attribute = group.key
            exc.add_note(f"object {object_id!r}, attribute {group.key!r}")
            raise

        draws = list(draws)
        if len(draws) != num_draws:
            raise ValueError(
                f"{group.family.__name__}.fit returned {len(draws)} draws, expected {num_draws}"
            )
        per_group.append(draws)

    models = []
    for i in range(num_draws):
        model = ObjectModel(object_id, draw_index=i + 1)
        for group, draws in zip(spec.groups, per_group):
            model.add_attribute_model(group.key, draws[i])
        models.append(model.freeze())

    logger.debug(f"Fitted {num_draws} draws for object {object_id!r}")
    return Ensemble(object_id, models)


# =============================================================================
# Public API
# =============================================================================

def fit_ensemble(
    matches: Sequence[Match],
    object_id: Hashable,
    num_draws: int,
    model_spec: Any,
    priors: Optional[PriorTable] = None,
    slots: Optional[Sequence[int]] = None,
    weighting: Optional[TimeWeighting | WeightFunction | str] = None,
    rng: RandomSource = None,
    normal_draw_policy: Optional[NormalDrawPolicy] = None,
) -> Ensemble:
    """
    Fit the first-level ensemble of one object.

    Args:
        matches: Historical matches
        object_id: Object to fit
        num_draws: Ensemble size
        model_spec: Family name, per-attribute mapping, dependent descriptor
            or custom fitting callable
        priors: object_id -> {attribute -> prior}
        slots: Only use participations in these slot numbers (1-based)
        weighting: Time weighting (None = configured scheme)
        rng: Random source

    Returns:
        Ensemble of num_draws frozen object models
    """
    return fit_ensembles(
        matches,
        num_draws,
        model_spec,
        priors=priors,
        objects=[object_id],
        slots=slots,
        weighting=weighting,
        rng=rng,
        normal_draw_policy=normal_draw_policy,
        max_workers=1,
    )[object_id]


def fit_ensembles(
    matches: Sequence[Match],
    num_draws: int,
    model_spec: Any,
    priors: Optional[PriorTable] = None,
    objects: Optional[Sequence[Hashable]] = None,
    slots: Optional[Sequence[int]] = None,
    weighting: Optional[TimeWeighting | WeightFunction | str] = None,
    rng: RandomSource = None,
    normal_draw_policy: Optional[NormalDrawPolicy] = None,
    max_workers: Optional[int] = None,
) -> Dict[Hashable, Ensemble]:
    """
    Fit first-level ensembles for several objects.

    The model spec is resolved and every requested object is checked for
    history before any fitting starts, so schema errors never leave partial
    results behind. Each object draws from its own child generator.

    Raises:
        SchemaError: Invalid model spec or attribute absent from the data
        DataSufficiencyError: A requested object never appears in matches
    """
    num_draws = int(num_draws)
    if num_draws < 1:
        raise ValueError(f"num_draws must be >= 1, got {num_draws}")

    matches = list(matches)
    known = object_ids(matches, slots)
    objects = list(objects) if objects is not None else known

    spec = resolve_model_spec(model_spec, attribute_names(matches))
    weight_fn = resolve_weighting(weighting)

    known_set = set(known)
    for object_id in objects:
        if object_id not in known_set:
            raise DataSufficiencyError(
                f"Object {object_id!r} does not appear in the historical matches",
                object_id=object_id,
            )

    columns = None if spec.custom is not None else spec.attribute_names
    generators = spawn_generators(rng, len(objects))

    def _fit(item):
        object_id, child = item
        table = measurement_table(matches, object_id, slots=slots, attributes=columns)
        return fit_object(
            table,
            object_id,
            num_draws,
            spec,
            priors=priors,
            weighting=weight_fn,
            rng=child,
            normal_draw_policy=normal_draw_policy,
        )

    ensembles = parallel_map(_fit, list(zip(objects, generators)), max_workers=max_workers)

    logger.info(f"Fitted {len(ensembles)} ensembles of {num_draws} draws")
    return {ensemble.object_id: ensemble for ensemble in ensembles}
