"""
Configuration management for the Bayesian bagging engine.

Uses pydantic-settings for type-safe, validated configuration from environment.
"""

from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class NormalDrawPolicy(str, Enum):
    """How the plug-in Normal family answers num_draws > 1."""
    DUPLICATE = "duplicate"  # Identical copies of the plug-in estimate
    PERTURB = "perturb"      # Jeffreys-posterior draws around the estimate


class WeightingScheme(str, Enum):
    """Time weighting applied to historical measurements."""
    NONE = "none"
    EXPONENTIAL = "exponential"
    LINEAR = "linear"


class Settings(BaseSettings):
    """Engine settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="BAYESBAG_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # =========================================================================
    # Randomness
    # =========================================================================
    random_seed: int = Field(
        default=42,
        description="Seed of the root generator when the caller passes none",
    )

    # =========================================================================
    # Ensemble sizes
    # =========================================================================
    num_models: int = Field(
        default=10,
        ge=1,
        description="First-level ensemble size (one trained model per draw)",
    )
    num_test_draws: Optional[int] = Field(
        default=None,
        ge=1,
        description="Second-level draws per new match (None = num_models)",
    )

    # =========================================================================
    # Transformation
    # =========================================================================
    transformation: str = Field(default="means")
    quantile: float = Field(default=0.5, gt=0.0, lt=1.0)

    # =========================================================================
    # Attribute models
    # =========================================================================
    normal_draw_policy: NormalDrawPolicy = Field(
        default=NormalDrawPolicy.DUPLICATE,
        description="Behaviour of the plug-in Normal family for num_draws > 1",
    )

    # =========================================================================
    # Time weighting
    # =========================================================================
    weighting_scheme: WeightingScheme = Field(default=WeightingScheme.NONE)
    half_life: float = Field(default=365.0, gt=0.0)
    window: float = Field(default=730.0, gt=0.0)

    # =========================================================================
    # Execution
    # =========================================================================
    max_workers: int = Field(default=1, ge=1, le=64)
    reuse_test_ensembles: bool = Field(default=True)

    # =========================================================================
    # Logging
    # =========================================================================
    log_level: str = Field(default="INFO")
    log_file: Optional[Path] = Field(default=None)

    # =========================================================================
    # Validation
    # =========================================================================
    @field_validator("transformation", mode="before")
    @classmethod
    def validate_transformation(cls, v: str) -> str:
        """Normalize rule name."""
        return str(v).strip().lower()

    @field_validator("log_file", mode="before")
    @classmethod
    def validate_log_file(cls, v: Optional[str | Path]) -> Optional[Path]:
        """Convert string to Path and create parent dir if needed."""
        if v is None:
            return None
        path = Path(v)
        path.parent.mkdir(parents=True, exist_ok=True)
        return path


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    """
    return Settings()


# Convenience exports
settings = get_settings()
