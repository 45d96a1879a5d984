"""Cooperative instance-level cancellation."""

from typing import Optional

from ..exceptions import WorkflowCancelled


class CancellationToken:
    """Set from outside the workflow, checked by the workflow between stages.

    Steps already in flight run to completion; the next stage boundary
    raises ``WorkflowCancelled``.
    """

    def __init__(self, instance_id: str):
        self.instance_id = instance_id
        self._cancelled = False
        self.reason: Optional[str] = None

    def cancel(self, reason: Optional[str] = None) -> None:
        self._cancelled = True
        self.reason = reason

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def raise_if_cancelled(self, stage: Optional[str] = None) -> None:
        if self._cancelled:
            raise WorkflowCancelled(self.instance_id, stage)
