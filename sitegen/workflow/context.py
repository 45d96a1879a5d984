"""Immutable stage-output record threaded through the workflow stages."""

from dataclasses import dataclass, replace
from typing import Any, Dict, Optional, Tuple

from ..exceptions import SiteGenError
from ..models import QualityScore, SiteGenerationParams
from ..research.aggregate import ResearchAggregate


@dataclass(frozen=True)
class WorkflowContext:
    """Each stage returns a new context with its outputs filled in."""
    params: SiteGenerationParams
    profile: Optional[Dict[str, Any]] = None
    aggregate: Optional[ResearchAggregate] = None
    v3: Optional[Dict[str, Any]] = None
    html: Optional[str] = None
    privacy_html: Optional[str] = None
    terms_html: Optional[str] = None
    quality: Optional[QualityScore] = None
    regenerated: bool = False
    version: Optional[str] = None
    pages: Tuple[str, ...] = ()

    def advance(self, **outputs: Any) -> "WorkflowContext":
        return replace(self, **outputs)

    def require(self, name: str) -> Any:
        value = getattr(self, name)
        if value is None:
            raise SiteGenError(f"Stage output {name!r} is not available yet")
        return value
