"""
Sitegen - durable AI site generation workflow engine
"""

__version__ = "1.0.0"
__author__ = "Sitegen Team"

__all__ = [
    "ConfValue",
    "SiteGenerationParams",
    "SiteGenerationWorkflow",
    "StepExecutor",
    "WorkflowEngine",
    "Settings",
    "__version__",
    "__author__",
]

def __getattr__(name: str):
    """Lazy import to avoid import-time side effects."""
    if name == "ConfValue":
        from .models import ConfValue
        return ConfValue
    elif name == "SiteGenerationParams":
        from .models import SiteGenerationParams
        return SiteGenerationParams
    elif name == "SiteGenerationWorkflow":
        from .workflow.graph import SiteGenerationWorkflow
        return SiteGenerationWorkflow
    elif name == "StepExecutor":
        from .core.step_executor import StepExecutor
        return StepExecutor
    elif name == "WorkflowEngine":
        from .engine import WorkflowEngine
        return WorkflowEngine
    elif name == "Settings":
        from sitegen.config.settings import Settings
        return Settings
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
