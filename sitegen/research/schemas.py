"""Output schemas for every prompt the workflow runs.

Model output is loose JSON, so the schemas accept extra keys and default
everything that is not load-bearing for later stages. What later stages do
depend on (profile ``business_type``/``services``, a numeric ``overall``
score, a doctype in generated HTML) is required.
"""

from typing import Any, Dict, List, Optional, Type, Union

import pydantic
from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..exceptions import ValidationError
from ..models import QualityScore, rescale_bare_score


class _Loose(BaseModel):
    model_config = ConfigDict(extra="allow")


class ServiceItem(_Loose):
    name: str = Field(min_length=1)
    description: Optional[str] = None
    price_hint: Optional[str] = None


class Address(_Loose):
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip: Optional[str] = None
    country: Optional[str] = None

    def one_line(self) -> str:
        return ", ".join(p for p in (self.street, self.city, self.state, self.zip) if p)


class ProfileOutput(_Loose):
    business_type: str = Field(min_length=1)
    services: List[ServiceItem] = Field(default_factory=list)
    description: str = ""
    business_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    website_url: Optional[str] = None
    address: Address = Field(default_factory=Address)
    hours: List[Dict[str, Any]] = Field(default_factory=list)

    @field_validator("services", mode="before")
    @classmethod
    def _services_from_strings(cls, v):
        if isinstance(v, list):
            return [{"name": s} if isinstance(s, str) else s for s in v]
        return v

    @field_validator("address", mode="before")
    @classmethod
    def _address_from_string(cls, v):
        if isinstance(v, str):
            return {"street": v}
        return v or {}


class SocialOutput(_Loose):
    website_url: Optional[str] = None
    social_links: List[Dict[str, Any]] = Field(default_factory=list)
    review_platforms: List[Dict[str, Any]] = Field(default_factory=list)
    google_business_photos: List[Dict[str, Any]] = Field(default_factory=list)


class BrandOutput(_Loose):
    logo: Dict[str, Any] = Field(default_factory=dict)
    colors: Dict[str, Any] = Field(default_factory=dict)
    fonts: Dict[str, Any] = Field(default_factory=dict)
    brand_personality: Optional[str] = None
    style_notes: Optional[str] = None


class SellingPointsOutput(_Loose):
    selling_points: List[Dict[str, Any]] = Field(default_factory=list)
    hero_slogans: List[Dict[str, Any]] = Field(default_factory=list)
    benefit_bullets: List[str] = Field(default_factory=list)


class ImagesOutput(_Loose):
    hero_images: List[Dict[str, Any]] = Field(default_factory=list)
    service_images: List[Dict[str, Any]] = Field(default_factory=list)
    gallery: List[Dict[str, Any]] = Field(default_factory=list)
    storefront_image: Optional[Dict[str, Any]] = None


class ScoreOutput(_Loose):
    overall: float
    scores: Dict[str, float] = Field(default_factory=dict)
    issues: List[str] = Field(default_factory=list)
    suggestions: List[str] = Field(default_factory=list)

    @field_validator("overall")
    @classmethod
    def _normalise_scale(cls, v: float) -> float:
        # Some models answer out of 10 or on a 0-100 scale
        scaled = rescale_bare_score(v)
        if scaled is None:
            raise ValueError(f"overall score out of range: {v}")
        return scaled

    def to_quality_score(self) -> QualityScore:
        scaled = {k: rescale_bare_score(s) for k, s in self.scores.items()}
        per_category = {k: s for k, s in scaled.items() if s is not None}
        return QualityScore(
            overall=self.overall,
            per_category=per_category,
            issues=self.issues,
            suggestions=self.suggestions,
        )


OUTPUT_SCHEMAS: Dict[str, Type[BaseModel]] = {
    "research_profile": ProfileOutput,
    "research_social": SocialOutput,
    "research_brand": BrandOutput,
    "research_selling_points": SellingPointsOutput,
    "research_images": ImagesOutput,
    "score_website": ScoreOutput,
}

HTML_PROMPTS = {"generate_website", "generate_legal_pages"}


def validate_output(prompt_id: str, raw: Any) -> Union[BaseModel, Any]:
    """Validate parsed model output against the prompt's schema.

    Raises ``ValidationError`` (retryable) on mismatch. Prompts without a
    registered schema pass through unchanged.
    """
    schema = OUTPUT_SCHEMAS.get(prompt_id)
    if schema is None:
        return raw
    try:
        return schema.model_validate(raw)
    except pydantic.ValidationError as e:
        raise ValidationError(f"{prompt_id} output failed validation: {e.error_count()} error(s): {e.errors()[0]['msg']}",
                              prompt_id=prompt_id) from e


def validate_html(prompt_id: str, output: str) -> str:
    """Generated pages must be complete HTML documents."""
    if not isinstance(output, str) or "<!doctype html" not in output.lower():
        raise ValidationError(f"{prompt_id} output must be a complete HTML document", prompt_id=prompt_id)
    return output
