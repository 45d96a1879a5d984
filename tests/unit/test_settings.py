"""Tests for settings and step retry policies."""

import pytest

from sitegen.config.settings import STEP_POLICIES, RetryPolicy, Settings
from sitegen.exceptions import ConfigurationError


class TestRetryPolicy:
    def test_max_attempts_is_retries_plus_one(self):
        assert RetryPolicy(retries=3, base_delay=10, timeout=120).max_attempts == 4
        assert RetryPolicy(retries=0, base_delay=0, timeout=1).max_attempts == 1

    @pytest.mark.parametrize("kwargs", [
        {"retries": -1, "base_delay": 1, "timeout": 1},
        {"retries": 10, "base_delay": 1, "timeout": 1},
        {"retries": 1, "base_delay": -1, "timeout": 1},
        {"retries": 1, "base_delay": 1, "timeout": 0},
        {"retries": 1, "base_delay": 1, "timeout": 1, "backoff_multiplier": 0.5},
    ])
    def test_invalid_policies_rejected(self, kwargs):
        with pytest.raises(ConfigurationError):
            RetryPolicy(**kwargs)

    def test_delay_for(self):
        policy = RetryPolicy(retries=3, base_delay=10, timeout=120)
        assert [policy.delay_for(i) for i in range(3)] == [10, 20, 40]

    def test_scaled_keeps_timeout(self):
        policy = RetryPolicy(retries=3, base_delay=10, timeout=120, jitter=2).scaled(0.5)
        assert policy.base_delay == 5
        assert policy.jitter == 1
        assert policy.timeout == 120


class TestStepPolicies:
    def test_research_and_generation_policies(self):
        assert STEP_POLICIES["research-brand"].max_attempts == 4
        assert STEP_POLICIES["research-brand"].base_delay == 10
        assert STEP_POLICIES["generate-website"].base_delay == 15
        assert STEP_POLICIES["generate-website"].timeout == 300
        assert STEP_POLICIES["score-website"].max_attempts == 3

    def test_every_policy_within_bounds(self):
        for name, policy in STEP_POLICIES.items():
            assert 1 <= policy.max_attempts <= 10, name


class TestSettings:
    def test_defaults(self):
        settings = Settings(_env_file=None)
        assert settings.MIN_QUALITY == 0.6
        assert settings.DEFAULT_QUALITY == 0.5
        assert settings.REDIS_URL is None

    def test_policy_for_scales_delays(self):
        settings = Settings(BACKOFF_SCALE=0.0, _env_file=None)
        policy = settings.policy_for("research-profile")
        assert policy.base_delay == 0
        assert policy.max_attempts == 4

    def test_policy_for_unknown_step(self):
        with pytest.raises(ConfigurationError):
            Settings(_env_file=None).policy_for("does-not-exist")

    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("SITEGEN_MIN_QUALITY", "0.75")
        monkeypatch.setenv("SITEGEN_LLM_MODEL", "local-model")
        settings = Settings(_env_file=None)
        assert settings.MIN_QUALITY == 0.75
        assert settings.LLM_MODEL == "local-model"
