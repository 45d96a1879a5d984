"""Execution core: step executor and cancellation."""

from .cancellation import CancellationToken
from .step_executor import StepExecutor

__all__ = ["CancellationToken", "StepExecutor"]
