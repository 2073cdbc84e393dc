"""Configuration management for metasynth.

Process-wide defaults live in :class:`Settings` (environment / ``.env``).
The engine never reads them directly: callers build a frozen
:class:`AnalysisConfig` and pass it explicitly to every engine class, so
concurrent calls never share mutable state.
"""

from dataclasses import dataclass, replace
from functools import lru_cache
from typing import Any, Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="METASYNTH_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Significance level for confidence intervals (0.05 -> 95% CI)
    alpha: float = 0.05

    # Added to every cell of a 2x2 table that has a zero cell
    # Reference: Sweeting MJ, et al. Stat Med 2004;23:1351-1375
    continuity_correction: float = 0.5

    # Funnel asymmetry tests conventionally use a looser threshold
    egger_threshold: float = 0.10

    # Random-effects CI adjustment (off = plain DerSimonian-Laird)
    hartung_knapp: bool = False

    # Treatment ranking simulation
    n_simulations: int = 10000
    random_seed: int = 20240517
    higher_is_better: bool = True

    # Logging
    log_level: str = "WARNING"
    log_format: Literal["standard", "json"] = "standard"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


@dataclass(frozen=True)
class AnalysisConfig:
    """Per-call analysis configuration.

    Attributes:
        alpha: Two-sided significance level for confidence intervals
        continuity_correction: Value added to all cells when any 2x2 cell is zero
        egger_threshold: p-value below which Egger's test flags asymmetry
        hartung_knapp: Use the Hartung-Knapp adjustment for random-effects CIs
        n_simulations: Monte Carlo draws for SUCRA rank probabilities
        random_seed: Seed for the ranking simulation
        higher_is_better: Outcome direction used when ranking treatments
    """

    alpha: float = 0.05
    continuity_correction: float = 0.5
    egger_threshold: float = 0.10
    hartung_knapp: bool = False
    n_simulations: int = 10000
    random_seed: int = 20240517
    higher_is_better: bool = True

    def __post_init__(self) -> None:
        if not 0 < self.alpha < 1:
            raise ValueError(f"alpha must be in (0, 1), got {self.alpha}")
        if self.continuity_correction <= 0:
            raise ValueError(
                f"continuity_correction must be positive, got {self.continuity_correction}"
            )
        if not 0 < self.egger_threshold < 1:
            raise ValueError(f"egger_threshold must be in (0, 1), got {self.egger_threshold}")
        if self.n_simulations < 100:
            raise ValueError(f"n_simulations must be at least 100, got {self.n_simulations}")

    @property
    def confidence_level(self) -> float:
        """Confidence level matching alpha (e.g. 0.95)."""
        return 1 - self.alpha

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "AnalysisConfig":
        """Build a frozen config from application settings."""
        settings = settings or get_settings()
        return cls(
            alpha=settings.alpha,
            continuity_correction=settings.continuity_correction,
            egger_threshold=settings.egger_threshold,
            hartung_knapp=settings.hartung_knapp,
            n_simulations=settings.n_simulations,
            random_seed=settings.random_seed,
            higher_is_better=settings.higher_is_better,
        )

    def with_overrides(self, **overrides: Any) -> "AnalysisConfig":
        """Return a copy with the given non-None fields replaced."""
        changes = {key: value for key, value in overrides.items() if value is not None}
        return replace(self, **changes) if changes else self


DEFAULT_CONFIG = AnalysisConfig()
