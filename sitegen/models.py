from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Optional, List, Dict, Any, Generic, TypeVar
from datetime import datetime, timezone
from enum import Enum
import math
import re


T = TypeVar("T")


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def round2(value: float) -> float:
    """Round half-up to 2 decimal places."""
    return math.floor(value * 100 + 0.5) / 100


def clamp_confidence(value: Any) -> float:
    """Clamp to [0, 1] and round to 2 places; non-numeric or NaN becomes 0."""
    try:
        v = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(v):
        return 0.0
    v = min(1.0, max(0.0, v))
    return round2(v)


def rescale_bare_score(value: float) -> Optional[float]:
    """Map a score given without a scale onto [0, 1].

    Up to 1 is already a fraction, up to 10 is read as out of 10 and up to
    100 as a percentage. Anything else returns None.
    """
    if value < 0 or value > 100:
        return None
    if value <= 1:
        return value
    if value <= 10:
        return value / 10
    return value / 100


class SourceKind(str, Enum):
    """Provenance of a fact"""
    OWNER_PROVIDED = "owner_provided"
    USER_PROVIDED = "user_provided"
    MAPPING_SERVICE = "mapping_service"
    OPEN_MAP_DATA = "open_map_data"
    REVIEW_PLATFORM = "review_platform"
    DOMAIN_REGISTRY = "domain_registry"
    STREET_IMAGERY = "street_imagery"
    SOCIAL_PROFILE = "social_profile"
    MODEL_GENERATED = "model_generated"
    INTERNAL_INFERENCE = "internal_inference"
    STOCK_ASSET = "stock_asset"


class SourceRef(BaseModel):
    kind: SourceKind
    id: Optional[str] = None
    url: Optional[str] = None
    retrieved_at: str = Field(default_factory=utc_now_iso)
    notes: Optional[str] = None

    @property
    def dedup_key(self) -> str:
        return f"{self.kind.value}:{self.id or self.url or ''}"


class ConfValue(BaseModel, Generic[T]):
    """A confidence-weighted fact with source attribution."""
    value: T
    confidence: float
    sources: List[SourceRef] = Field(min_length=1)
    rationale: Optional[str] = None
    last_verified_at: Optional[str] = None
    is_placeholder: bool = False

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp(cls, v):
        return clamp_confidence(v)

    @property
    def source_kinds(self) -> set:
        return {s.kind for s in self.sources}


class QualityScore(BaseModel):
    overall: float
    per_category: Dict[str, float] = Field(default_factory=dict)
    issues: List[str] = Field(default_factory=list)
    suggestions: List[str] = Field(default_factory=list)
    degraded: bool = False      # parsed by the text fallback, not from JSON
    is_default: bool = False    # substituted after a scoring failure

    @field_validator("overall", mode="before")
    @classmethod
    def _clamp_overall(cls, v):
        return clamp_confidence(v)

    @field_validator("per_category", mode="before")
    @classmethod
    def _clamp_categories(cls, v):
        if not isinstance(v, dict):
            return {}
        return {str(k): clamp_confidence(x) for k, x in v.items()}

    @classmethod
    def neutral(cls, overall: float = 0.5, reason: str = "") -> "QualityScore":
        issues = [f"Quality scoring unavailable: {reason}"] if reason else []
        return cls(overall=overall, issues=issues, is_default=True)


class SiteGenerationParams(BaseModel):
    """Parameters supplied by the caller to start one workflow instance"""
    site_id: str = Field(min_length=1)
    org_id: str = Field(min_length=1)
    business_name: str = Field(min_length=1)
    slug: Optional[str] = None
    business_address: Optional[str] = None
    business_phone: Optional[str] = None
    external_place_id: Optional[str] = None
    additional_context: Optional[str] = None
    uploaded_asset_refs: List[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def default_slug(self):
        if not self.slug:
            slug = re.sub(r"[^a-z0-9]+", "-", self.business_name.lower()).strip("-")
            self.slug = slug[:63] or self.site_id
        return self


class StepState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED_RETRYABLE = "failed_retryable"
    FAILED_TERMINAL = "failed_terminal"


class StepExecution(BaseModel):
    """Bookkeeping for one named step within an instance"""
    name: str
    attempt: int = 0
    max_attempts: int = Field(ge=1, le=10)
    timeout: float
    state: StepState = StepState.PENDING
    result: Optional[Any] = None
    error: Optional[str] = None
    cached: bool = False
    started_at: Optional[str] = None
    completed_at: Optional[str] = None


class WorkflowStatus(str, Enum):
    """Coarse externally-visible status"""
    COLLECTING = "collecting"
    GENERATING = "generating"
    UPLOADING = "uploading"
    PUBLISHED = "published"
    ERROR = "error"


class WorkflowResult(BaseModel):
    site_id: str
    slug: str
    version: str
    quality: float
    quality_score: QualityScore
    html: str
    pages: List[str]
    regenerated: bool = False
    overall_confidence: Optional[float] = None


class WorkflowInstance(BaseModel):
    instance_id: str
    params: SiteGenerationParams
    status: Optional[WorkflowStatus] = None
    steps: Dict[str, StepExecution] = Field(default_factory=dict)
    result: Optional[WorkflowResult] = None
    error: Optional[str] = None
    created_at: str = Field(default_factory=utc_now_iso)
    updated_at: str = Field(default_factory=utc_now_iso)

    @property
    def is_terminal(self) -> bool:
        return self.status in (WorkflowStatus.PUBLISHED, WorkflowStatus.ERROR)


class PlacesData(BaseModel):
    """Mapping-service lookup result used to corroborate research facts"""
    place_id: str
    phone: Optional[str] = None
    website: Optional[str] = None
    hours: Optional[List[Dict[str, Any]]] = None
    geo: Optional[Dict[str, float]] = None
    maps_url: Optional[str] = None
    rating: Optional[float] = None
    review_count: Optional[int] = None
    reviews: List[Dict[str, str]] = Field(default_factory=list)
    photos: List[Dict[str, str]] = Field(default_factory=list)
