"""
Attribute models: fitted distributions over one attribute's true value.

Families:
    poisson               Poisson likelihood, Gamma prior on the rate
    normal                Plug-in Normal (sample mean, sample variance)
    normal_inverse_gamma  Normal likelihood, NIG prior on (mean, variance)
    bernoulli             Bernoulli likelihood, Beta prior on p
    mvn_inverse_wishart   Multivariate Normal, NIW prior on (mean, cov)

fit() returns a list of num_draws instances. With num_draws == 1 the single
instance holds the point estimate (posterior mean under the supplied prior,
the MLE under the default prior) and no randomness is used. With
num_draws > 1 each instance holds one independent posterior draw of the
family's parameters.

Custom families only need the same capability set: a fit classmethod with
the signature below and mean/variance/sample (and quantile, for the
quantile transformation). They are not required to subclass AttributeModel.
"""

from abc import ABC, abstractmethod
from typing import (
    Any,
    ClassVar,
    Dict,
    List,
    Optional,
    Protocol,
    Sequence,
    Type,
    runtime_checkable,
)

import numpy as np
from scipy import stats

from bayesbag.bayesian.priors import (
    BetaPrior,
    GammaPrior,
    NormalInverseGammaPrior,
    NormalInverseWishartPrior,
    Prior,
    coerce_prior,
)
from bayesbag.config import NormalDrawPolicy, settings
from bayesbag.constants import FAMILY_ALIASES, FamilyEnum
from bayesbag.errors import DataSufficiencyError, SchemaError
from bayesbag.utils import RandomSource, as_generator, get_logger

logger = get_logger("bayesian.attribute")


@runtime_checkable
class AttributeModelLike(Protocol):
    """Capability set shared by built-in and custom families."""

    def mean(self) -> Any: ...

    def variance(self) -> Any: ...

    def sample(self, count: int = 1, rng: RandomSource = None) -> np.ndarray: ...


# =============================================================================
# Helpers
# =============================================================================

def _check_num_draws(num_draws: int) -> int:
    num_draws = int(num_draws)
    if num_draws < 1:
        raise ValueError(f"num_draws must be >= 1, got {num_draws}")
    return num_draws


def _check_quantile(q: float) -> float:
    if not 0.0 < q < 1.0:
        raise ValueError(f"Quantile must be in (0, 1), got {q}")
    return q


def _prepare(
    measurements: Sequence[Any],
    weights: Optional[Sequence[float]],
    ndim: int = 1,
) -> tuple[np.ndarray, np.ndarray]:
    """
    Convert measurements and weights to float arrays, dropping missing values.

    For ndim == 2 a row is dropped when any of its entries is missing.
    """
    x = np.asarray(measurements, dtype=float)
    if ndim == 1:
        x = x.reshape(-1)
    elif x.ndim != 2:
        raise ValueError(f"Expected a 2-D array of measurements, got shape {x.shape}")

    if weights is None:
        w = np.ones(x.shape[0])
    else:
        w = np.asarray(weights, dtype=float).reshape(-1)
        if w.shape[0] != x.shape[0]:
            raise ValueError(
                f"Got {w.shape[0]} weights for {x.shape[0]} measurements"
            )
        if np.any(w < 0) or np.any(np.isnan(w)):
            raise ValueError("Weights must be non-negative")

    keep = ~np.isnan(x) if ndim == 1 else ~np.isnan(x).any(axis=1)
    return x[keep], w[keep]


# =============================================================================
# Base Class
# =============================================================================

class AttributeModel(ABC):
    """Base class for built-in families."""

    family: ClassVar[str] = ""
    prior_type: ClassVar[Optional[Type[Prior]]] = None
    multivariate: ClassVar[bool] = False

    @classmethod
    @abstractmethod
    def fit(
        cls,
        measurements: Sequence[Any],
        num_draws: int = 1,
        prior: Optional[Any] = None,
        weights: Optional[Sequence[float]] = None,
        rng: RandomSource = None,
    ) -> List["AttributeModel"]:
        """
        Fit the family to one attribute's history.

        Args:
            measurements: Historical values (NaN entries are ignored)
            num_draws: 1 for the point estimate, N > 1 for N posterior draws
            prior: Family prior (instance or mapping); None = uninformative
            weights: Optional non-negative per-measurement weights
            rng: Random source for posterior draws

        Returns:
            num_draws independent instances
        """

    @abstractmethod
    def mean(self) -> Any:
        """Mean of the modeled distribution."""

    @abstractmethod
    def variance(self) -> Any:
        """Variance (covariance matrix for joint models)."""

    @abstractmethod
    def sample(self, count: int = 1, rng: RandomSource = None) -> np.ndarray:
        """Draw count realizations of the attribute."""

    @abstractmethod
    def quantile(self, q: float) -> Any:
        """q-th quantile (per component for joint models)."""

    def __repr__(self) -> str:
        params = ", ".join(f"{k}={v!r}" for k, v in vars(self).items())
        return f"{type(self).__name__}({params})"


# =============================================================================
# Poisson-Gamma
# =============================================================================

class PoissonGamma(AttributeModel):
    """
    Poisson rate with a conjugate Gamma prior.

    Posterior: Gamma(shape + sum(w * x), rate + sum(w)).
    """

    family = FamilyEnum.POISSON.value
    prior_type = GammaPrior

    def __init__(self, rate: float):
        self.rate = float(rate)

    @classmethod
    def fit(cls, measurements, num_draws=1, prior=None, weights=None, rng=None):
        num_draws = _check_num_draws(num_draws)
        prior = coerce_prior(prior, GammaPrior) or GammaPrior()
        x, w = _prepare(measurements, weights)

        if np.any(x < 0):
            raise ValueError("Poisson measurements must be non-negative")

        shape = prior.shape + float(np.sum(w * x))
        rate = prior.rate + float(np.sum(w))

        if num_draws == 1:
            if rate == 0:
                logger.warning("Poisson fit on empty history without prior; rate set to 0")
                return [cls(0.0)]
            return [cls(shape / rate)]

        if rate <= 0:
            raise DataSufficiencyError(
                "Poisson posterior is improper: no measurements and no prior rate"
            )

        rng = as_generator(rng)
        draws = rng.gamma(shape, 1.0 / rate, size=num_draws)
        return [cls(lam) for lam in draws]

    def mean(self) -> float:
        return self.rate

    def variance(self) -> float:
        return self.rate

    def sample(self, count=1, rng=None):
        return as_generator(rng).poisson(self.rate, size=count)

    def quantile(self, q):
        return float(stats.poisson.ppf(_check_quantile(q), self.rate))


# =============================================================================
# Gaussian families
# =============================================================================

class _Gaussian(AttributeModel):
    """Shared (mean, variance) parameterization."""

    def __init__(self, mu: float, sigma2: float):
        self.mu = float(mu)
        self.sigma2 = float(sigma2)

    def mean(self) -> float:
        return self.mu

    def variance(self) -> float:
        return self.sigma2

    def sample(self, count=1, rng=None):
        return as_generator(rng).normal(self.mu, np.sqrt(self.sigma2), size=count)

    def quantile(self, q):
        q = _check_quantile(q)
        if self.sigma2 == 0:
            return self.mu
        return float(stats.norm.ppf(q, loc=self.mu, scale=np.sqrt(self.sigma2)))


class Normal(_Gaussian):
    """
    Plug-in Normal: sample mean and (reliability-weighted) sample variance.

    No Bayesian updating takes place. For num_draws > 1 the policy decides
    between identical copies (duplicate) and draws from the Jeffreys-prior
    posterior around the plug-in values (perturb).
    """

    family = FamilyEnum.NORMAL.value

    @classmethod
    def fit(cls, measurements, num_draws=1, prior=None, weights=None, rng=None, policy=None):
        num_draws = _check_num_draws(num_draws)
        policy = NormalDrawPolicy(policy or settings.normal_draw_policy)
        x, w = _prepare(measurements, weights)

        if prior is not None:
            logger.debug("Normal family ignores priors")

        v1 = float(np.sum(w))
        if x.size == 0 or v1 == 0:
            logger.warning("Normal fit on empty history; mean and variance set to 0")
            mu, s2, n_eff = 0.0, 0.0, 0.0
        else:
            mu = float(np.average(x, weights=w))
            v2 = float(np.sum(w ** 2))
            denom = v1 - v2 / v1
            s2 = float(np.sum(w * (x - mu) ** 2) / denom) if denom > 0 else 0.0
            n_eff = v1 ** 2 / v2

        if num_draws == 1 or policy == NormalDrawPolicy.DUPLICATE:
            return [cls(mu, s2) for _ in range(num_draws)]

        df = n_eff - 1.0
        if df <= 0:
            raise DataSufficiencyError(
                "Perturbed Normal draws need at least two measurements"
            )

        rng = as_generator(rng)
        sigma2 = s2 * df / rng.chisquare(df, size=num_draws)
        mus = rng.normal(mu, np.sqrt(sigma2 / n_eff))
        return [cls(m, s) for m, s in zip(mus, sigma2)]


class NormalInverseGamma(_Gaussian):
    """
    Normal likelihood with a conjugate Normal-Inverse-Gamma prior.

    Point estimate (num_draws == 1) is the plug-in (mu_n, beta_n / alpha_n).
    Under the default prior this is the MLE (mean, SS / n). With an
    informative prior it sits between the posterior mode beta_n / (alpha_n + 1)
    and the posterior mean beta_n / (alpha_n - 1), which is undefined for
    alpha_n <= 1. Use num_draws > 1 for posterior draws of the variance.
    """

    family = FamilyEnum.NORMAL_INVERSE_GAMMA.value
    prior_type = NormalInverseGammaPrior

    @staticmethod
    def posterior(x: np.ndarray, w: np.ndarray, prior: NormalInverseGammaPrior) -> tuple:
        """Return (mu_n, kappa_n, alpha_n, beta_n)."""
        n = float(np.sum(w))
        if n > 0:
            xbar = float(np.average(x, weights=w))
            ss = float(np.sum(w * (x - xbar) ** 2))
        else:
            xbar, ss = 0.0, 0.0

        kappa_n = prior.kappa + n
        mu_n = (prior.kappa * prior.mu + n * xbar) / kappa_n if kappa_n > 0 else 0.0
        alpha_n = prior.alpha + n / 2.0
        beta_n = prior.beta + 0.5 * ss
        if kappa_n > 0:
            beta_n += prior.kappa * n * (xbar - prior.mu) ** 2 / (2.0 * kappa_n)
        return mu_n, kappa_n, alpha_n, beta_n

    @classmethod
    def fit(cls, measurements, num_draws=1, prior=None, weights=None, rng=None):
        num_draws = _check_num_draws(num_draws)
        prior = coerce_prior(prior, NormalInverseGammaPrior) or NormalInverseGammaPrior()
        x, w = _prepare(measurements, weights)

        mu_n, kappa_n, alpha_n, beta_n = cls.posterior(x, w, prior)

        if num_draws == 1:
            if kappa_n == 0:
                logger.warning("NIG fit on empty history without prior; estimates set to 0")
            sigma2 = beta_n / alpha_n if alpha_n > 0 else 0.0
            return [cls(mu_n, sigma2)]

        if kappa_n <= 0 or alpha_n <= 0 or beta_n <= 0:
            raise DataSufficiencyError(
                "Normal-Inverse-Gamma posterior is improper "
                f"(kappa={kappa_n}, alpha={alpha_n}, beta={beta_n})"
            )

        rng = as_generator(rng)
        sigma2 = 1.0 / rng.gamma(alpha_n, 1.0 / beta_n, size=num_draws)
        mus = rng.normal(mu_n, np.sqrt(sigma2 / kappa_n))
        return [cls(m, s) for m, s in zip(mus, sigma2)]


# =============================================================================
# Bernoulli-Beta
# =============================================================================

class BernoulliBeta(AttributeModel):
    """
    Bernoulli probability with a conjugate Beta prior.

    Posterior: Beta(alpha + successes, beta + failures).
    """

    family = FamilyEnum.BERNOULLI.value
    prior_type = BetaPrior

    def __init__(self, p: float):
        self.p = float(p)

    @classmethod
    def fit(cls, measurements, num_draws=1, prior=None, weights=None, rng=None):
        num_draws = _check_num_draws(num_draws)
        prior = coerce_prior(prior, BetaPrior) or BetaPrior()
        x, w = _prepare(measurements, weights)

        if np.any((x < 0) | (x > 1)):
            raise ValueError("Bernoulli measurements must lie in [0, 1]")

        a = prior.alpha + float(np.sum(w * x))
        b = prior.beta + float(np.sum(w * (1.0 - x)))

        if num_draws == 1:
            if a + b == 0:
                logger.warning("Bernoulli fit on empty history without prior; p set to 0")
                return [cls(0.0)]
            return [cls(a / (a + b))]

        if a <= 0 or b <= 0:
            raise DataSufficiencyError(
                f"Beta posterior is improper (alpha={a}, beta={b}); supply a prior"
            )

        rng = as_generator(rng)
        return [cls(p) for p in rng.beta(a, b, size=num_draws)]

    def mean(self) -> float:
        return self.p

    def variance(self) -> float:
        return self.p * (1.0 - self.p)

    def sample(self, count=1, rng=None):
        return as_generator(rng).binomial(1, self.p, size=count)

    def quantile(self, q):
        return float(stats.bernoulli.ppf(_check_quantile(q), self.p))


# =============================================================================
# Multivariate Normal-Inverse-Wishart
# =============================================================================

class MultivariateNormalInverseWishart(AttributeModel):
    """
    Joint model for a vector of attributes.

    Posterior:
        kappa_n = kappa + n          nu_n = nu + n
        mu_n    = (kappa mu + n xbar) / kappa_n
        psi_n   = psi + S + kappa n / kappa_n (xbar - mu)(xbar - mu)^T

    Point estimate: (mu_n, psi_n / nu_n), i.e. (xbar, S / n) by default.
    """

    family = FamilyEnum.MVN_INVERSE_WISHART.value
    prior_type = NormalInverseWishartPrior
    multivariate = True

    def __init__(self, mu: np.ndarray, cov: np.ndarray):
        self.mu = np.asarray(mu, dtype=float)
        self.cov = np.asarray(cov, dtype=float)

    @property
    def dimension(self) -> int:
        return self.mu.shape[0]

    @staticmethod
    def posterior(x: np.ndarray, w: np.ndarray, prior: NormalInverseWishartPrior) -> tuple:
        """Return (mu_n, kappa_n, nu_n, psi_n)."""
        d = x.shape[1]
        mu0 = prior.mu if prior.mu is not None else np.zeros(d)
        psi0 = prior.psi if prior.psi is not None else np.zeros((d, d))
        if mu0.shape != (d,) or psi0.shape != (d, d):
            raise SchemaError(
                f"NIW prior dimension does not match {d} jointly modeled attributes"
            )

        n = float(np.sum(w))
        if n > 0:
            xbar = np.average(x, axis=0, weights=w)
            centered = x - xbar
            scatter = (w[:, None] * centered).T @ centered
        else:
            xbar, scatter = np.zeros(d), np.zeros((d, d))

        kappa_n = prior.kappa + n
        nu_n = prior.nu + n
        mu_n = (prior.kappa * mu0 + n * xbar) / kappa_n if kappa_n > 0 else np.zeros(d)
        psi_n = psi0 + scatter
        if kappa_n > 0:
            diff = (xbar - mu0)[:, None]
            psi_n = psi_n + prior.kappa * n / kappa_n * (diff @ diff.T)
        return mu_n, kappa_n, nu_n, psi_n

    @classmethod
    def fit(cls, measurements, num_draws=1, prior=None, weights=None, rng=None):
        num_draws = _check_num_draws(num_draws)
        prior = coerce_prior(prior, NormalInverseWishartPrior) or NormalInverseWishartPrior()
        x, w = _prepare(measurements, weights, ndim=2)
        d = x.shape[1]

        mu_n, kappa_n, nu_n, psi_n = cls.posterior(x, w, prior)

        if num_draws == 1:
            if nu_n == 0:
                logger.warning("NIW fit on empty history without prior; estimates set to 0")
                return [cls(mu_n, np.zeros((d, d)))]
            return [cls(mu_n, psi_n / nu_n)]

        if kappa_n <= 0 or nu_n <= d - 1:
            raise DataSufficiencyError(
                f"NIW posterior is improper (kappa={kappa_n}, nu={nu_n}, dimension={d})"
            )
        try:
            np.linalg.cholesky(psi_n)
        except np.linalg.LinAlgError as exc:
            raise DataSufficiencyError(
                "NIW posterior scale matrix is not positive definite"
            ) from exc

        rng = as_generator(rng)
        covs = stats.invwishart(df=nu_n, scale=psi_n).rvs(size=num_draws, random_state=rng)
        covs = np.asarray(covs, dtype=float).reshape(num_draws, d, d)
        return [
            cls(rng.multivariate_normal(mu_n, cov / kappa_n), cov)
            for cov in covs
        ]

    def mean(self) -> np.ndarray:
        return self.mu

    def variance(self) -> np.ndarray:
        return self.cov

    def sample(self, count=1, rng=None):
        return as_generator(rng).multivariate_normal(self.mu, self.cov, size=count)

    def quantile(self, q):
        z = stats.norm.ppf(_check_quantile(q))
        return self.mu + z * np.sqrt(np.clip(np.diag(self.cov), 0.0, None))


# =============================================================================
# Registry
# =============================================================================

_FAMILIES: Dict[str, Type] = {
    PoissonGamma.family: PoissonGamma,
    Normal.family: Normal,
    NormalInverseGamma.family: NormalInverseGamma,
    BernoulliBeta.family: BernoulliBeta,
    MultivariateNormalInverseWishart.family: MultivariateNormalInverseWishart,
}


def _check_capabilities(cls: Type) -> None:
    missing = [
        name for name in ("fit", "mean", "variance", "sample")
        if not callable(getattr(cls, name, None))
    ]
    if missing:
        raise TypeError(f"{cls.__name__} lacks attribute model capabilities: {missing}")


def register_family(name: str, cls: Type) -> None:
    """Register a custom family under name."""
    _check_capabilities(cls)
    key = name.strip().lower()
    if key in _FAMILIES and _FAMILIES[key] is not cls:
        logger.warning(f"Replacing attribute model family '{key}'")
    _FAMILIES[key] = cls


def get_family(family: str | Type) -> Type:
    """
    Resolve a family name (or class) to its implementation.

    Raises:
        SchemaError: Unknown family name
    """
    if isinstance(family, type):
        _check_capabilities(family)
        return family

    key = str(family).strip().lower()
    key = FAMILY_ALIASES.get(key, key)
    try:
        return _FAMILIES[key]
    except KeyError:
        raise SchemaError(
            f"Unknown attribute model family '{family}'. "
            f"Available: {available_families()}"
        ) from None


def available_families() -> List[str]:
    return sorted(_FAMILIES)


def is_multivariate(family: Type) -> bool:
    return bool(getattr(family, "multivariate", False))
