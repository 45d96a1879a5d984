"""
Workflow audit log.

``WorkflowLog`` is the collaborator interface. The engine never calls a sink
directly: ``SafeWorkflowLog`` schedules each write as a background task,
logs and drops sink failures, and always adds ``site_id`` to the metadata.
"""

import asyncio
from typing import Any, Dict, List, Optional, Protocol, Set, runtime_checkable

import structlog

logger = structlog.get_logger()


@runtime_checkable
class WorkflowLog(Protocol):
    async def record(self, org_id: str, entity_id: str, action: str, metadata: Dict[str, Any]) -> None:
        ...


class StructlogWorkflowLog:
    """Sink that writes audit events to the process log"""

    async def record(self, org_id: str, entity_id: str, action: str, metadata: Dict[str, Any]) -> None:
        logger.info(action, org_id=org_id, entity_id=entity_id, **metadata)


class InMemoryWorkflowLog:
    def __init__(self):
        self.records: List[Dict[str, Any]] = []

    async def record(self, org_id: str, entity_id: str, action: str, metadata: Dict[str, Any]) -> None:
        self.records.append({"org_id": org_id, "entity_id": entity_id, "action": action, "metadata": metadata})

    def actions(self) -> List[str]:
        return [r["action"] for r in self.records]


class SafeWorkflowLog:
    """Fire-and-forget wrapper around any WorkflowLog sink."""

    def __init__(self, sink: Optional[WorkflowLog] = None):
        self.sink = sink or StructlogWorkflowLog()
        self._pending: Set[asyncio.Task] = set()

    def record(self, org_id: str, site_id: str, action: str, metadata: Optional[Dict[str, Any]] = None) -> None:
        meta = dict(metadata or {})
        meta["site_id"] = site_id
        try:
            task = asyncio.get_running_loop().create_task(self._write(org_id, site_id, action, meta))
        except RuntimeError:
            logger.warning("Workflow log dropped, no running loop", action=action, site_id=site_id)
            return
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _write(self, org_id: str, site_id: str, action: str, metadata: Dict[str, Any]) -> None:
        try:
            await self.sink.record(org_id, site_id, action, metadata)
        except Exception as e:
            logger.warning("Workflow log write failed", action=action, site_id=site_id, error=str(e))

    def bind(self, org_id: str, site_id: str) -> "BoundWorkflowLog":
        return BoundWorkflowLog(self, org_id, site_id)

    async def flush(self) -> None:
        """Wait for every scheduled write; used at shutdown and in tests."""
        while self._pending:
            await asyncio.gather(*list(self._pending))


class BoundWorkflowLog:
    """SafeWorkflowLog bound to one instance's org and site"""

    def __init__(self, log: SafeWorkflowLog, org_id: str, site_id: str):
        self.log = log
        self.org_id = org_id
        self.site_id = site_id

    def event(self, action: str, **metadata: Any) -> None:
        self.log.record(self.org_id, self.site_id, action, metadata)
