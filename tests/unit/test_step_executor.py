"""Tests for the step executor: caching, retries, backoff and timeouts."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from sitegen.config.settings import RetryPolicy
from sitegen.core.step_executor import StepExecutor
from sitegen.exceptions import StepTimeoutError, TerminalStepError, ValidationError, WorkflowCancelled
from sitegen.models import StepState
from sitegen.storage.step_cache import InMemoryStepCache
from sitegen.workflow.log import InMemoryWorkflowLog, SafeWorkflowLog


def _policy(retries=3, base_delay=10, timeout=5.0, multiplier=2.0):
    return RetryPolicy(retries=retries, base_delay=base_delay, timeout=timeout, backoff_multiplier=multiplier)


class Flaky:
    """Work function failing a fixed number of times before succeeding."""

    def __init__(self, failures, result="ok", error=None):
        self.failures = failures
        self.result = result
        self.error = error or ValidationError("bad output")
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return self.result


@pytest.fixture
def sleep():
    return AsyncMock()


@pytest.fixture
def cache():
    return InMemoryStepCache()


class TestStepExecutor:

    @pytest.mark.asyncio
    async def test_success_is_cached(self, cache, sleep):
        executor = StepExecutor("inst-1", cache, sleep=sleep)
        work = Flaky(0, result={"business_type": "bakery"})
        assert await executor.execute("research-profile", _policy(), work) == {"business_type": "bakery"}
        assert await cache.get("inst-1", "research-profile") == {"business_type": "bakery"}
        assert executor.steps["research-profile"].state == StepState.SUCCEEDED
        assert executor.steps["research-profile"].attempt == 1
        sleep.assert_not_called()

    @pytest.mark.asyncio
    async def test_cached_result_skips_work(self, cache, sleep):
        """A cached step never invokes its work function again."""
        await cache.put("inst-1", "generate-website", "<!DOCTYPE html><p>cached</p>")
        work = AsyncMock(return_value="fresh")
        executor = StepExecutor("inst-1", cache, sleep=sleep)

        result = await executor.execute("generate-website", _policy(), work)
        assert result == "<!DOCTYPE html><p>cached</p>"
        work.assert_not_called()
        assert executor.steps["generate-website"].cached is True

    @pytest.mark.asyncio
    async def test_resume_with_new_executor(self, cache, sleep):
        first = StepExecutor("inst-1", cache, sleep=sleep)
        await first.execute("research-brand", _policy(), Flaky(0, result={"colors": {"primary": "#fff"}}))

        work = Flaky(0, result="different")
        second = StepExecutor("inst-1", cache, sleep=sleep)
        assert await second.execute("research-brand", _policy(), work) == {"colors": {"primary": "#fff"}}
        assert work.calls == 0

    @pytest.mark.asyncio
    async def test_cache_is_namespaced_per_instance(self, cache, sleep):
        await StepExecutor("inst-1", cache, sleep=sleep).execute("research-profile", _policy(), Flaky(0, result="a"))
        work = Flaky(0, result="b")
        assert await StepExecutor("inst-2", cache, sleep=sleep).execute("research-profile", _policy(), work) == "b"
        assert work.calls == 1

    @pytest.mark.asyncio
    async def test_retries_then_succeeds_with_exponential_backoff(self, cache, sleep):
        executor = StepExecutor("inst-1", cache, sleep=sleep)
        work = Flaky(2)
        assert await executor.execute("research-social", _policy(base_delay=10, multiplier=2), work) == "ok"
        assert work.calls == 3
        delays = [c.args[0] for c in sleep.await_args_list]
        assert delays == [10, 20]

    @pytest.mark.asyncio
    async def test_exhaustion_raises_terminal_error_with_step_name(self, cache, sleep):
        """3 retries means 4 attempts in total."""
        executor = StepExecutor("inst-1", cache, sleep=sleep)
        work = Flaky(100)
        with pytest.raises(TerminalStepError) as exc:
            await executor.execute("research-brand", _policy(retries=3), work)
        assert work.calls == 4
        assert exc.value.step_name == "research-brand"
        assert exc.value.attempts == 4
        assert isinstance(exc.value.last_error, ValidationError)
        assert "bad output" in str(exc.value)
        assert executor.steps["research-brand"].state == StepState.FAILED_TERMINAL
        assert await cache.get("inst-1", "research-brand") is None
        assert [c.args[0] for c in sleep.await_args_list] == [10, 20, 40]

    @pytest.mark.asyncio
    async def test_single_attempt_policy(self, cache, sleep):
        executor = StepExecutor("inst-1", cache, sleep=sleep)
        work = Flaky(1)
        with pytest.raises(TerminalStepError):
            await executor.execute("upload-artifacts", _policy(retries=0), work)
        assert work.calls == 1
        sleep.assert_not_called()

    @pytest.mark.asyncio
    async def test_attempt_timeout_is_retryable(self, cache, sleep):
        calls = 0

        async def slow_then_fast():
            nonlocal calls
            calls += 1
            if calls == 1:
                await asyncio.sleep(5)
            return "done"

        executor = StepExecutor("inst-1", cache, sleep=sleep)
        result = await executor.execute("score-website", _policy(retries=2, timeout=0.05), slow_then_fast)
        assert result == "done"
        assert calls == 2

    @pytest.mark.asyncio
    async def test_timeouts_exhaust_to_terminal(self, cache, sleep):
        async def hang():
            await asyncio.sleep(5)

        executor = StepExecutor("inst-1", cache, sleep=sleep)
        with pytest.raises(TerminalStepError) as exc:
            await executor.execute("score-website", _policy(retries=2, timeout=0.02), hang)
        assert isinstance(exc.value.last_error, StepTimeoutError)
        assert exc.value.attempts == 3

    @pytest.mark.asyncio
    async def test_cancellation_is_not_retried(self, cache, sleep):
        work = Flaky(100, error=WorkflowCancelled("inst-1"))
        executor = StepExecutor("inst-1", cache, sleep=sleep)
        with pytest.raises(WorkflowCancelled):
            await executor.execute("research-images", _policy(), work)
        assert work.calls == 1

    @pytest.mark.asyncio
    async def test_attempt_failures_reported_to_workflow_log(self, cache, sleep):
        sink = InMemoryWorkflowLog()
        log = SafeWorkflowLog(sink)
        executor = StepExecutor("inst-1", cache, log=log.bind("org-1", "site-1"), sleep=sleep)

        await executor.execute("research-social", _policy(), Flaky(1))
        await log.flush()

        assert sink.actions() == ["workflow.step_retry", "workflow.step_completed"]
        assert all(r["metadata"]["site_id"] == "site-1" for r in sink.records)
        assert sink.records[1]["metadata"]["step"] == "research-social"
        assert "elapsed_ms" in sink.records[1]["metadata"]

    @pytest.mark.asyncio
    async def test_broken_workflow_log_never_fails_step(self, cache, sleep):
        sink = AsyncMock()
        sink.record.side_effect = RuntimeError("audit db down")
        log = SafeWorkflowLog(sink)
        executor = StepExecutor("inst-1", cache, log=log.bind("org-1", "site-1"), sleep=sleep)

        assert await executor.execute("research-social", _policy(), Flaky(1)) == "ok"
        await log.flush()
        assert sink.record.await_count == 2

    @pytest.mark.asyncio
    async def test_cache_write_failure_still_returns_result(self, sleep):
        cache = AsyncMock()
        cache.get.return_value = None
        cache.put.side_effect = ConnectionError("redis gone")
        executor = StepExecutor("inst-1", cache, sleep=sleep)
        assert await executor.execute("research-social", _policy(), Flaky(0)) == "ok"
