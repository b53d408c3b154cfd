"""
Constants and enums for the Bayesian bagging engine.

Centralizes column naming conventions and built-in family names.
"""

from enum import Enum


# =============================================================================
# Match Table Columns
# =============================================================================

ID_PREFIX = "ID_"          # ID_<k>: object identifier of slot k
TIME_COLUMN = "TIME"       # Optional ordering/weighting key
OUTCOME_COLUMN = "y"       # Outcome, historical matches only
SLOT_SEPARATOR = "_"       # <attr>_<k>


# =============================================================================
# Attribute Model Families
# =============================================================================

class FamilyEnum(str, Enum):
    """Built-in attribute model families."""
    POISSON = "poisson"                       # Poisson-Gamma
    NORMAL = "normal"                         # Plug-in Normal
    NORMAL_INVERSE_GAMMA = "normal_inverse_gamma"
    BERNOULLI = "bernoulli"                   # Bernoulli-Beta
    MVN_INVERSE_WISHART = "mvn_inverse_wishart"


FAMILY_ALIASES = {
    "poisson_gamma": FamilyEnum.POISSON.value,
    "gaussian": FamilyEnum.NORMAL.value,
    "nig": FamilyEnum.NORMAL_INVERSE_GAMMA.value,
    "bernoulli_beta": FamilyEnum.BERNOULLI.value,
    "beta": FamilyEnum.BERNOULLI.value,
    "mvn": FamilyEnum.MVN_INVERSE_WISHART.value,
    "niw": FamilyEnum.MVN_INVERSE_WISHART.value,
}


# =============================================================================
# Transformations
# =============================================================================

class TransformationEnum(str, Enum):
    """Built-in transformation rules."""
    MEANS = "means"
    SAMPLE = "sample"
    QUANTILE = "quantile"
