"""
Bayesian modeling module.

Provides:
- Attribute model families (conjugate and plug-in)
- Prior specifications
- Object models and ensembles
- First-level ensemble fitting
- Time weighting
"""

from bayesbag.bayesian.priors import (
    BetaPrior,
    GammaPrior,
    NormalInverseGammaPrior,
    NormalInverseWishartPrior,
)
from bayesbag.bayesian.attribute import (
    AttributeModel,
    AttributeModelLike,
    BernoulliBeta,
    MultivariateNormalInverseWishart,
    Normal,
    NormalInverseGamma,
    PoissonGamma,
    available_families,
    get_family,
    register_family,
)
from bayesbag.bayesian.object_model import (
    Ensemble,
    ObjectModel,
)
from bayesbag.bayesian.fitting import (
    fit_ensemble,
    fit_ensembles,
    resolve_model_spec,
)
from bayesbag.bayesian.weighting import TimeWeighting

__all__ = [
    # Priors
    "BetaPrior",
    "GammaPrior",
    "NormalInverseGammaPrior",
    "NormalInverseWishartPrior",
    # Attribute models
    "AttributeModel",
    "AttributeModelLike",
    "BernoulliBeta",
    "MultivariateNormalInverseWishart",
    "Normal",
    "NormalInverseGamma",
    "PoissonGamma",
    "available_families",
    "get_family",
    "register_family",
    # Object models
    "Ensemble",
    "ObjectModel",
    # Fitting
    "fit_ensemble",
    "fit_ensembles",
    "resolve_model_spec",
    "TimeWeighting",
]
