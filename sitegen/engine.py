"""
Workflow engine - the trigger surface.

Callers submit generation parameters and get back an instance id, then poll
``status`` or await ``result``. Instances are independent: each has its own
executor, cancellation token and step-cache namespace. ``resume`` re-runs a
failed instance; steps that already succeeded come from the step cache.
Finished instances keep only their WorkflowInstance snapshot; the workflow
object and its in-memory step results are released.
"""

import asyncio
from typing import Dict, Optional

import structlog

from .config.settings import Settings, get_settings
from .core.cancellation import CancellationToken
from .core.step_executor import SleepFn
from .exceptions import SiteGenError, StageFailedError, WorkflowCancelled
from .llm.prompt_runner import PromptRunner
from .models import PlacesData, SiteGenerationParams, WorkflowInstance, WorkflowResult, WorkflowStatus, utc_now_iso
from .storage.object_store import ObjectStore
from .storage.status import StatusSink
from .storage.step_cache import DurableStepCache
from .workflow.graph import SiteGenerationWorkflow
from .workflow.log import SafeWorkflowLog

logger = structlog.get_logger()


class WorkflowEngine:
    """Starts, tracks, resumes and cancels workflow instances."""

    def __init__(
        self,
        runner: PromptRunner,
        cache: DurableStepCache,
        object_store: ObjectStore,
        status_sink: StatusSink,
        workflow_log: Optional[SafeWorkflowLog] = None,
        settings: Optional[Settings] = None,
        sleep: SleepFn = asyncio.sleep,
    ):
        self.runner = runner
        self.cache = cache
        self.object_store = object_store
        self.status_sink = status_sink
        self.workflow_log = workflow_log or SafeWorkflowLog()
        self.settings = settings or get_settings()
        self._sleep = sleep
        self._instances: Dict[str, WorkflowInstance] = {}
        self._workflows: Dict[str, SiteGenerationWorkflow] = {}
        self._tasks: Dict[str, asyncio.Task] = {}
        self._tokens: Dict[str, CancellationToken] = {}
        self._places: Dict[str, Optional[PlacesData]] = {}

    def submit(self, params: SiteGenerationParams, instance_id: Optional[str] = None,
               places: Optional[PlacesData] = None) -> str:
        """Start a new instance and return its id (the site id unless given)."""
        instance_id = instance_id or params.site_id
        if instance_id in self._instances:
            raise SiteGenError(f"Workflow instance {instance_id} already exists")
        self._instances[instance_id] = WorkflowInstance(instance_id=instance_id, params=params)
        self._places[instance_id] = places
        self._start(instance_id)
        logger.info("engine.submitted", instance_id=instance_id, site_id=params.site_id)
        return instance_id

    def resume(self, instance_id: str) -> str:
        """Re-run a finished-with-error instance; cached steps are not re-executed."""
        instance = self._get(instance_id)
        task = self._tasks.get(instance_id)
        if task is not None and not task.done():
            raise SiteGenError(f"Workflow instance {instance_id} is still running")
        if instance.status == WorkflowStatus.PUBLISHED:
            return instance_id
        instance.error = None
        self._start(instance_id)
        logger.info("engine.resumed", instance_id=instance_id)
        return instance_id

    def cancel(self, instance_id: str, reason: Optional[str] = None) -> bool:
        """Request cancellation; takes effect at the next stage boundary."""
        self._get(instance_id)
        token = self._tokens.get(instance_id)
        task = self._tasks.get(instance_id)
        if token is None or task is None or task.done():
            return False
        token.cancel(reason)
        return True

    def status(self, instance_id: str) -> WorkflowInstance:
        instance = self._get(instance_id)
        workflow = self._workflows.get(instance_id)
        if workflow is not None:
            task = self._tasks.get(instance_id)
            if task is not None and not task.done() and workflow.status is not None:
                instance.status = workflow.status
            instance.steps = {k: v.model_copy() for k, v in workflow.executor.steps.items()}
        return instance

    async def result(self, instance_id: str) -> Optional[WorkflowResult]:
        """Wait for the instance to finish; None when it ended in error."""
        self._get(instance_id)
        task = self._tasks.get(instance_id)
        if task is not None:
            await asyncio.shield(task)
        return self.status(instance_id).result

    async def run(self, params: SiteGenerationParams, places: Optional[PlacesData] = None) -> WorkflowInstance:
        instance_id = self.submit(params, places=places)
        await self.result(instance_id)
        return self.status(instance_id)

    async def shutdown(self) -> None:
        pending = [t for t in self._tasks.values() if not t.done()]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        await self.workflow_log.flush()

    def _get(self, instance_id: str) -> WorkflowInstance:
        try:
            return self._instances[instance_id]
        except KeyError:
            raise SiteGenError(f"Unknown workflow instance {instance_id}")

    def _start(self, instance_id: str) -> None:
        instance = self._instances[instance_id]
        token = CancellationToken(instance_id)
        workflow = SiteGenerationWorkflow(
            instance.params,
            runner=self.runner,
            cache=self.cache,
            object_store=self.object_store,
            status_sink=self.status_sink,
            workflow_log=self.workflow_log,
            settings=self.settings,
            token=token,
            places=self._places.get(instance_id),
            instance_id=instance_id,
            sleep=self._sleep,
        )
        self._tokens[instance_id] = token
        self._workflows[instance_id] = workflow
        self._tasks[instance_id] = asyncio.get_running_loop().create_task(self._drive(instance, workflow))

    async def _drive(self, instance: WorkflowInstance, workflow: SiteGenerationWorkflow) -> None:
        try:
            instance.result = await workflow.run()
            instance.status = WorkflowStatus.PUBLISHED
        except (StageFailedError, WorkflowCancelled) as e:
            instance.status = WorkflowStatus.ERROR
            instance.error = str(e)
        except Exception as e:
            logger.exception("engine.unexpected_error", instance_id=instance.instance_id)
            instance.status = WorkflowStatus.ERROR
            instance.error = f"{type(e).__name__}: {e}"
            try:
                await self.status_sink.update_status(instance.params.site_id, WorkflowStatus.ERROR.value,
                                                     error=instance.error)
            except Exception as sink_error:
                logger.warning("status.update_failed", site_id=instance.params.site_id, error=str(sink_error))
        finally:
            # Keep only the snapshot; step results stay in the step cache
            instance.steps = {k: v.model_copy(update={"result": None}) for k, v in workflow.executor.steps.items()}
            instance.updated_at = utc_now_iso()
            self._workflows.pop(instance.instance_id, None)
            self._tasks.pop(instance.instance_id, None)
            self._tokens.pop(instance.instance_id, None)
