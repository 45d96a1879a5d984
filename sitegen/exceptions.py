"""
Custom exceptions for the site generation engine
"""

from typing import Optional


class SiteGenError(Exception):
    """Base exception for the site generation engine"""
    pass


class ConfigurationError(SiteGenError):
    """Configuration related errors"""
    pass


class ValidationError(SiteGenError):
    """Step output could not be extracted or validated (retryable)"""
    def __init__(self, message: str, prompt_id: Optional[str] = None):
        super().__init__(message)
        self.prompt_id = prompt_id


class PromptNotFoundError(SiteGenError):
    """No prompt registered for the requested id/version"""
    def __init__(self, prompt_id: str, version: int):
        super().__init__(f"Prompt not found: {prompt_id}@{version}")
        self.prompt_id = prompt_id
        self.version = version


class StepTimeoutError(SiteGenError):
    """A single step attempt exceeded its policy timeout (retryable)"""
    def __init__(self, step_name: str, timeout: float):
        super().__init__(f"Step {step_name} timed out after {timeout:.1f}s")
        self.step_name = step_name
        self.timeout = timeout


class TerminalStepError(SiteGenError):
    """A step exhausted its retries"""
    def __init__(self, step_name: str, attempts: int, last_error: Optional[BaseException] = None):
        detail = f"{type(last_error).__name__}: {last_error}" if last_error else "unknown error"
        super().__init__(f"Step {step_name} failed after {attempts} attempt(s): {detail}")
        self.step_name = step_name
        self.attempts = attempts
        self.last_error = last_error


class StageFailedError(SiteGenError):
    """A required step inside a stage failed terminally"""
    def __init__(self, stage: str, cause: TerminalStepError):
        super().__init__(f"Stage {stage} failed: {cause}")
        self.stage = stage
        self.cause = cause

    @property
    def step_name(self) -> str:
        return self.cause.step_name


class NonFatalScoringError(SiteGenError):
    """Quality scoring failed; a default score is substituted"""
    def __init__(self, message: str, default_overall: float):
        super().__init__(message)
        self.default_overall = default_overall


class RegenerationError(SiteGenError):
    """Regeneration attempt failed; the prior output is kept"""
    pass


class UploadError(SiteGenError):
    """Artifact upload failed"""
    pass


class WorkflowCancelled(SiteGenError):
    """Workflow instance was cancelled between stages"""
    def __init__(self, instance_id: str, stage: Optional[str] = None):
        where = f" before stage {stage}" if stage else ""
        super().__init__(f"Workflow {instance_id} cancelled{where}")
        self.instance_id = instance_id
        self.stage = stage
