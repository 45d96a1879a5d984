"""Unified configuration and settings module.

Single source of truth for engine settings, step retry policies and
quality/confidence thresholds.
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from functools import lru_cache
from typing import Dict, Literal, Optional
import logging

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..exceptions import ConfigurationError

logger = logging.getLogger(__name__)

MIN_QUALITY: float = 0.6
DEFAULT_QUALITY: float = 0.5
MAX_ATTEMPTS_LIMIT: int = 10


@dataclass(frozen=True)
class RetryPolicy:
    """Declarative retry/backoff/timeout policy for one step."""
    retries: int                    # re-tries after the first attempt
    base_delay: float               # seconds before the first retry
    timeout: float                  # per-attempt timeout in seconds
    backoff_multiplier: float = 2.0
    jitter: float = 0.0             # max random seconds added to each delay

    def __post_init__(self):
        if not 1 <= self.max_attempts <= MAX_ATTEMPTS_LIMIT:
            raise ConfigurationError(
                f"max_attempts must be in [1, {MAX_ATTEMPTS_LIMIT}], got {self.max_attempts}"
            )
        if self.base_delay < 0 or self.timeout <= 0 or self.backoff_multiplier < 1:
            raise ConfigurationError(f"Invalid retry policy: {self}")

    @property
    def max_attempts(self) -> int:
        return self.retries + 1

    def delay_for(self, attempt: int) -> float:
        """Backoff before the retry that follows failed attempt `attempt` (0-based)."""
        return self.base_delay * (self.backoff_multiplier ** attempt)

    def scaled(self, factor: float) -> "RetryPolicy":
        """Copy with every delay scaled; timeouts are left alone."""
        return replace(self, base_delay=self.base_delay * factor, jitter=self.jitter * factor)

    def to_dict(self) -> Dict[str, float]:
        return {
            "retries": self.retries,
            "max_attempts": self.max_attempts,
            "base_delay": self.base_delay,
            "backoff_multiplier": self.backoff_multiplier,
            "timeout": self.timeout,
            "jitter": self.jitter,
        }


RESEARCH_POLICY = RetryPolicy(retries=3, base_delay=10, timeout=120)
HTML_POLICY = RetryPolicy(retries=3, base_delay=15, timeout=300)
LEGAL_POLICY = RetryPolicy(retries=3, base_delay=10, timeout=180)
SCORING_POLICY = RetryPolicy(retries=2, base_delay=10, timeout=120)
UPLOAD_POLICY = RetryPolicy(retries=3, base_delay=5, timeout=60)
STATUS_POLICY = RetryPolicy(retries=3, base_delay=5, timeout=30)

STEP_POLICIES: Dict[str, RetryPolicy] = {
    "research-profile": RESEARCH_POLICY,
    "research-social": RESEARCH_POLICY,
    "research-brand": RESEARCH_POLICY,
    "research-selling-points": RESEARCH_POLICY,
    "research-images": RESEARCH_POLICY,
    "generate-website": HTML_POLICY,
    "regenerate-website": HTML_POLICY,
    "generate-privacy-page": LEGAL_POLICY,
    "generate-terms-page": LEGAL_POLICY,
    "score-website": SCORING_POLICY,
    "rescore-website": SCORING_POLICY,
    "upload-artifacts": UPLOAD_POLICY,
    "update-site-status": STATUS_POLICY,
}

# Section weights for aggregate confidence: identity/operations dominate,
# media and brand count least.
SECTION_WEIGHTS: Dict[str, float] = {
    "identity": 5,
    "operations": 4,
    "offerings": 3,
    "trust": 3,
    "brand": 2,
    "marketing": 2,
    "media": 1,
    "seo": 2,
}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="SITEGEN_", env_file=".env", extra="ignore")

    # ==== Prompt runner (OpenAI-compatible chat endpoint) ====
    LLM_BASE_URL: str = "https://api.openai.com/v1"
    LLM_API_KEY: Optional[str] = None
    LLM_MODEL: str = "gpt-4o-mini"
    LLM_TIMEOUT_SECONDS: float = Field(300.0, gt=0)

    # ==== Collaborators ====
    REDIS_URL: Optional[str] = None
    STEP_CACHE_TTL_SECONDS: int = Field(7 * 24 * 3600, ge=60)
    DATABASE_URL: str = "sqlite:///sitegen.db"
    OUTPUT_DIR: str = "outputs"

    # ==== Quality gate ====
    MIN_QUALITY: float = Field(MIN_QUALITY, ge=0, le=1)
    DEFAULT_QUALITY: float = Field(DEFAULT_QUALITY, ge=0, le=1)
    HTML_SCORE_CHARS: int = Field(6000, ge=500)

    # ==== Retries ====
    BACKOFF_SCALE: float = Field(1.0, ge=0, description="Multiplier applied to every policy delay")

    # ==== Observability ====
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    ENABLE_PROMETHEUS: bool = False
    PROMETHEUS_PORT: int = 9100

    def policy_for(self, step_name: str) -> RetryPolicy:
        """Resolve the retry policy for a step, scaled by BACKOFF_SCALE."""
        try:
            policy = STEP_POLICIES[step_name]
        except KeyError:
            raise ConfigurationError(f"No retry policy registered for step {step_name!r}")
        if self.BACKOFF_SCALE != 1.0:
            policy = policy.scaled(self.BACKOFF_SCALE)
        return policy


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
