"""
Step executor - runs one named unit of work with retries, backoff and
per-attempt timeouts, and records its result in the durable step cache.

A step whose result is already cached is never executed again for the same
instance, which is what makes re-running a workflow after a crash safe.
"""

import asyncio
import time
from typing import Any, Awaitable, Callable, Dict, Optional

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from ..config.settings import RetryPolicy
from ..exceptions import SiteGenError, StepTimeoutError, TerminalStepError, WorkflowCancelled
from ..models import StepExecution, StepState, utc_now_iso
from ..monitoring import metrics
from ..storage.step_cache import DurableStepCache
from ..workflow.log import BoundWorkflowLog

logger = structlog.get_logger()

WorkFn = Callable[[], Awaitable[Any]]
SleepFn = Callable[[float], Awaitable[None]]

__all__ = ["RetryPolicy", "StepExecutor", "WorkFn"]


class StepExecutor:
    """Executes named steps for a single workflow instance."""

    def __init__(
        self,
        instance_id: str,
        cache: DurableStepCache,
        log: Optional[BoundWorkflowLog] = None,
        sleep: SleepFn = asyncio.sleep,
    ):
        self.instance_id = instance_id
        self.cache = cache
        self.log = log
        self._sleep = sleep
        self.steps: Dict[str, StepExecution] = {}

    def _event(self, action: str, **metadata: Any) -> None:
        if self.log is not None:
            self.log.event(action, **metadata)

    async def execute(self, step_name: str, policy: RetryPolicy, work_fn: WorkFn) -> Any:
        """Run ``work_fn`` under ``policy`` unless a cached result exists.

        Raises:
            TerminalStepError: when every attempt failed
            WorkflowCancelled: passed through untouched, never retried
        """
        existing = self.steps.get(step_name)
        if existing is not None and existing.state == StepState.RUNNING:
            raise SiteGenError(f"Step {step_name} is already running in instance {self.instance_id}")

        cached = await self.cache.get(self.instance_id, step_name)
        if cached is not None:
            self.steps[step_name] = StepExecution(
                name=step_name,
                max_attempts=policy.max_attempts,
                timeout=policy.timeout,
                state=StepState.SUCCEEDED,
                result=cached,
                cached=True,
                completed_at=utc_now_iso(),
            )
            metrics.record_attempt(step_name, "cached")
            logger.info("step.cache_hit", instance_id=self.instance_id, step=step_name)
            return cached

        execution = StepExecution(
            name=step_name,
            max_attempts=policy.max_attempts,
            timeout=policy.timeout,
            state=StepState.RUNNING,
            started_at=utc_now_iso(),
        )
        self.steps[step_name] = execution
        started = time.monotonic()

        retrying = AsyncRetrying(
            stop=stop_after_attempt(policy.max_attempts),
            wait=wait_exponential(multiplier=policy.base_delay, exp_base=policy.backoff_multiplier)
            + wait_random(0, policy.jitter),
            retry=retry_if_exception_type(Exception) & retry_if_not_exception_type(WorkflowCancelled),
            before_sleep=self._before_sleep(execution),
            sleep=self._sleep,
            reraise=True,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    execution.attempt = attempt.retry_state.attempt_number
                    execution.state = StepState.RUNNING
                    result = await self._run_attempt(step_name, policy, work_fn)
        except (WorkflowCancelled, asyncio.CancelledError):
            execution.state = StepState.FAILED_TERMINAL
            execution.error = "cancelled"
            raise
        except Exception as e:
            execution.state = StepState.FAILED_TERMINAL
            execution.error = f"{type(e).__name__}: {e}"
            execution.completed_at = utc_now_iso()
            logger.error("step.failed", instance_id=self.instance_id, step=step_name,
                         attempts=execution.attempt, error=execution.error)
            self._event("workflow.step_failed", step=step_name, attempts=execution.attempt,
                        error=execution.error, elapsed_ms=int((time.monotonic() - started) * 1000))
            raise TerminalStepError(step_name, execution.attempt, e) from e

        try:
            await self.cache.put(self.instance_id, step_name, result)
        except Exception as e:
            # The result is still good; a resumed run will just redo this step
            logger.error("step.cache_put_failed", instance_id=self.instance_id, step=step_name, error=str(e))

        elapsed = time.monotonic() - started
        execution.state = StepState.SUCCEEDED
        execution.result = result
        execution.completed_at = utc_now_iso()
        metrics.record_step_duration(step_name, elapsed)
        logger.info("step.succeeded", instance_id=self.instance_id, step=step_name,
                    attempts=execution.attempt, elapsed_s=round(elapsed, 3))
        self._event("workflow.step_completed", step=step_name, attempts=execution.attempt,
                    elapsed_ms=int(elapsed * 1000), message=f"{step_name} completed")
        return result

    async def _run_attempt(self, step_name: str, policy: RetryPolicy, work_fn: WorkFn) -> Any:
        try:
            result = await asyncio.wait_for(work_fn(), timeout=policy.timeout)
        except asyncio.TimeoutError:
            metrics.record_attempt(step_name, "timeout")
            raise StepTimeoutError(step_name, policy.timeout)
        except Exception:
            metrics.record_attempt(step_name, "failure")
            raise
        metrics.record_attempt(step_name, "success")
        return result

    def _before_sleep(self, execution: StepExecution) -> Callable[[RetryCallState], None]:
        def hook(retry_state: RetryCallState) -> None:
            error = retry_state.outcome.exception() if retry_state.outcome else None
            delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
            execution.state = StepState.FAILED_RETRYABLE
            execution.error = f"{type(error).__name__}: {error}" if error else None
            logger.warning("step.retry", instance_id=self.instance_id, step=execution.name,
                           attempt=retry_state.attempt_number, max_attempts=execution.max_attempts,
                           delay_s=round(delay, 2), error=execution.error)
            self._event("workflow.step_retry", step=execution.name, attempt=retry_state.attempt_number,
                        delay_s=round(delay, 2), error=execution.error)
        return hook
