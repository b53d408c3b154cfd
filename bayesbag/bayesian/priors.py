"""
Prior specifications for the conjugate attribute model families.

Every default is the zero-information value: with no prior supplied the
point estimate reduces to the maximum-likelihood estimate. Informative
values are supplied per object and per attribute by the caller.
"""

from typing import Any, Mapping, Optional, Type, TypeVar

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from bayesbag.errors import SchemaError

P = TypeVar("P", bound="Prior")


class Prior(BaseModel):
    """Base class for conjugate hyperparameters."""

    model_config = ConfigDict(frozen=True, extra="forbid", arbitrary_types_allowed=True)


class GammaPrior(Prior):
    """Gamma(shape, rate) prior on a Poisson rate."""

    shape: float = Field(default=0.0, ge=0.0)
    rate: float = Field(default=0.0, ge=0.0)


class BetaPrior(Prior):
    """Beta(alpha, beta) prior on a Bernoulli probability."""

    alpha: float = Field(default=0.0, ge=0.0)
    beta: float = Field(default=0.0, ge=0.0)


class NormalInverseGammaPrior(Prior):
    """
    Normal-Inverse-Gamma prior on (mean, variance).

    mean | variance ~ N(mu, variance / kappa)
    variance        ~ InvGamma(alpha, beta)
    """

    mu: float = 0.0
    kappa: float = Field(default=0.0, ge=0.0)
    alpha: float = Field(default=0.0, ge=0.0)
    beta: float = Field(default=0.0, ge=0.0)


class NormalInverseWishartPrior(Prior):
    """
    Normal-Inverse-Wishart prior on (mean vector, covariance matrix).

    mean | cov ~ MVN(mu, cov / kappa)
    cov        ~ InvWishart(nu, psi)

    mu and psi default to zeros of the data's dimension.
    """

    mu: Optional[np.ndarray] = None
    kappa: float = Field(default=0.0, ge=0.0)
    nu: float = Field(default=0.0, ge=0.0)
    psi: Optional[np.ndarray] = None

    @field_validator("mu", mode="before")
    @classmethod
    def validate_mu(cls, v: Any) -> Optional[np.ndarray]:
        if v is None:
            return None
        arr = np.asarray(v, dtype=float)
        if arr.ndim != 1:
            raise ValueError("mu must be a vector")
        return arr

    @field_validator("psi", mode="before")
    @classmethod
    def validate_psi(cls, v: Any) -> Optional[np.ndarray]:
        if v is None:
            return None
        arr = np.asarray(v, dtype=float)
        if arr.ndim != 2 or arr.shape[0] != arr.shape[1]:
            raise ValueError("psi must be a square matrix")
        return arr


def coerce_prior(prior: Any, prior_type: Optional[Type[P]]) -> Optional[P]:
    """
    Validate a caller-supplied prior into the family's prior type.

    Accepts None, an instance of prior_type, or a mapping of its fields.
    Families without a prior type pass the value through untouched.
    """
    if prior is None or prior_type is None:
        return prior
    if isinstance(prior, prior_type):
        return prior
    if isinstance(prior, Prior):
        raise SchemaError(
            f"Expected {prior_type.__name__}, got {type(prior).__name__}"
        )
    if isinstance(prior, Mapping):
        try:
            return prior_type(**prior)
        except ValidationError as exc:
            raise SchemaError(f"Invalid {prior_type.__name__}: {exc}") from exc
    raise SchemaError(f"Cannot interpret {prior!r} as {prior_type.__name__}")
