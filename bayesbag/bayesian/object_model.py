"""
Object models: the attribute models of one object for one posterior draw.
"""

from collections.abc import Mapping, Sequence
from typing import Any, Dict, Hashable, Iterable, Iterator, List, Optional, Tuple

import numpy as np

from bayesbag.utils import RandomSource, accepted_kwargs, as_generator

AttributeKey = str | Tuple[str, ...]


class ObjectModel(Mapping):
    """
    Ordered, unique-keyed mapping from attribute name to attribute model.

    A key is a single attribute name, or a tuple of names for one joint
    (multivariate) model. Models are appended with add_attribute_model while
    the object model is being built; after freeze() it is read-only.
    """

    def __init__(
        self,
        object_id: Optional[Hashable] = None,
        models: Optional[Mapping[AttributeKey, Any]] = None,
        draw_index: Optional[int] = None,
    ):
        self.object_id = object_id
        self.draw_index = draw_index
        self._models: Dict[AttributeKey, Any] = {}
        self._frozen = False
        for key, model in (models or {}).items():
            self.add_attribute_model(key, model)

    # -------------------------------------------------------------------------
    # Construction
    # -------------------------------------------------------------------------

    def add_attribute_model(self, name: AttributeKey, model: Any) -> "ObjectModel":
        """
        Attach one attribute model under name.

        Raises:
            TypeError: The object model is frozen
            KeyError: name, or one of the names it covers, is already present
        """
        if self._frozen:
            raise TypeError("Object model is frozen")

        key = tuple(name) if isinstance(name, (list, tuple)) else name
        taken = set(self.attribute_names)
        covered = key if isinstance(key, tuple) else (key,)
        clash = taken.intersection(covered)
        if clash:
            raise KeyError(f"Attribute(s) already modeled: {sorted(clash)}")

        self._models[key] = model
        return self

    def freeze(self) -> "ObjectModel":
        self._frozen = True
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    # -------------------------------------------------------------------------
    # Mapping protocol
    # -------------------------------------------------------------------------

    def __getitem__(self, key: AttributeKey) -> Any:
        return self._models[key]

    def __iter__(self) -> Iterator[AttributeKey]:
        return iter(self._models)

    def __len__(self) -> int:
        return len(self._models)

    def __repr__(self) -> str:
        return (
            f"ObjectModel(object_id={self.object_id!r}, draw_index={self.draw_index}, "
            f"attributes={list(self._models)})"
        )

    @property
    def attribute_names(self) -> List[str]:
        """Attribute names covered, flattening joint keys, in insertion order."""
        names = []
        for key in self._models:
            names.extend(key if isinstance(key, tuple) else (key,))
        return names

    # -------------------------------------------------------------------------
    # Broadcast queries
    # -------------------------------------------------------------------------

    def mean(self) -> Dict[AttributeKey, Any]:
        return {key: model.mean() for key, model in self._models.items()}

    def variance(self) -> Dict[AttributeKey, Any]:
        return {key: model.variance() for key, model in self._models.items()}

    def sample(self, count: int = 1, rng: RandomSource = None) -> Dict[AttributeKey, np.ndarray]:
        rng = as_generator(rng)
        return {
            key: model.sample(count, **accepted_kwargs(model.sample, {"rng": rng}))
            for key, model in self._models.items()
        }

    def quantile(self, q: float) -> Dict[AttributeKey, Any]:
        return {key: model.quantile(q) for key, model in self._models.items()}


class Ensemble(Sequence):
    """
    The num_draws object models of one object.

    Position i holds draw i + 1; the order must line up with training and
    test set indices downstream.
    """

    def __init__(self, object_id: Hashable, models: Iterable[ObjectModel]):
        self.object_id = object_id
        self._models: Tuple[ObjectModel, ...] = tuple(models)
        if not self._models:
            raise ValueError(f"Empty ensemble for object {object_id!r}")

    def __getitem__(self, index):
        return self._models[index]

    def __len__(self) -> int:
        return len(self._models)

    def __repr__(self) -> str:
        return f"Ensemble(object_id={self.object_id!r}, num_draws={len(self)})"

    def draw(self, draw_index: int) -> ObjectModel:
        """Object model for a 1-based draw index."""
        if not 1 <= draw_index <= len(self._models):
            raise IndexError(
                f"Draw {draw_index} out of range for ensemble of {len(self._models)}"
            )
        return self._models[draw_index - 1]
