"""
Step bodies: run a prompt, pull structured output out of the text, validate.

Every body raises ``ValidationError`` on unusable output so that the
StepExecutor retries it. Bodies return JSON-serialisable values only, since
results are stored in the durable step cache.
"""

import json
from typing import Any, Dict, Optional

import structlog

from ..config.settings import Settings
from ..exceptions import ValidationError
from ..llm.json_extract import extract_json_from_text, parse_quality_text, strip_code_fences
from ..llm.prompt_runner import PromptRunner
from ..models import QualityScore, SiteGenerationParams
from ..research.aggregate import ResearchAggregate
from ..research.schemas import Address, validate_html, validate_output

logger = structlog.get_logger()

PROMPT_VERSION = 1

RESEARCH_PROFILE = "research-profile"
RESEARCH_SOCIAL = "research-social"
RESEARCH_BRAND = "research-brand"
RESEARCH_SELLING_POINTS = "research-selling-points"
RESEARCH_IMAGES = "research-images"
GENERATE_WEBSITE = "generate-website"
REGENERATE_WEBSITE = "regenerate-website"
GENERATE_PRIVACY = "generate-privacy-page"
GENERATE_TERMS = "generate-terms-page"
SCORE_WEBSITE = "score-website"
RESCORE_WEBSITE = "rescore-website"
UPLOAD_ARTIFACTS = "upload-artifacts"
UPDATE_SITE_STATUS = "update-site-status"

# step name -> prompt id for the parallel research fan-out
PARALLEL_RESEARCH = {
    RESEARCH_SOCIAL: "research_social",
    RESEARCH_BRAND: "research_brand",
    RESEARCH_SELLING_POINTS: "research_selling_points",
    RESEARCH_IMAGES: "research_images",
}


class SiteSteps:
    """Prompt-backed step bodies shared by every stage"""

    def __init__(self, runner: PromptRunner, settings: Settings):
        self.runner = runner
        self.settings = settings

    async def research_json(self, prompt_id: str, variables: Dict[str, Any]) -> Dict[str, Any]:
        result = await self.runner.run(prompt_id, PROMPT_VERSION, variables)
        raw = extract_json_from_text(result.output, prompt_id)
        if not isinstance(raw, dict):
            raise ValidationError(f"{prompt_id} returned {type(raw).__name__}, expected an object", prompt_id=prompt_id)
        return validate_output(prompt_id, raw).model_dump(mode="json")

    async def html(self, prompt_id: str, variables: Dict[str, Any]) -> str:
        result = await self.runner.run(prompt_id, PROMPT_VERSION, variables)
        return validate_html(prompt_id, strip_code_fences(result.output))

    async def score(self, html: str, business_name: str) -> Dict[str, Any]:
        """Score generated HTML; falls back to the degraded text parser."""
        result = await self.runner.run("score_website", PROMPT_VERSION, {
            "html_content": html[:self.settings.HTML_SCORE_CHARS],
            "business_name": business_name,
        })
        try:
            raw = extract_json_from_text(result.output, "score_website")
            score = validate_output("score_website", raw).to_quality_score()
        except ValidationError as e:
            logger.warning("score.json_unusable", error=str(e))
            score = parse_quality_text(result.output)
        return score.model_dump(mode="json")


# ---- prompt variables ----

def profile_variables(params: SiteGenerationParams) -> Dict[str, Any]:
    return {
        "business_name": params.business_name,
        "business_address": params.business_address or "",
        "business_phone": params.business_phone or "",
        "external_place_id": params.external_place_id or "",
        "additional_context": params.additional_context or "",
    }


def research_variables(params: SiteGenerationParams, profile: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "business_name": params.business_name,
        "business_type": profile.get("business_type") or "general",
        "business_address": params.business_address or "",
        "services_json": json.dumps(profile.get("services") or []),
        "description": profile.get("description") or "",
        "website_url": profile.get("website_url") or "",
        "additional_context": params.additional_context or "",
    }


def website_variables(params: SiteGenerationParams, aggregate: ResearchAggregate,
                      feedback: Optional[QualityScore] = None) -> Dict[str, Any]:
    variables: Dict[str, Any] = aggregate.prompt_variables()
    variables["uploads_json"] = json.dumps(params.uploaded_asset_refs)
    variables["quality_feedback"] = feedback_text(feedback) if feedback else ""
    return variables


def feedback_text(score: QualityScore) -> str:
    lines = [f"Previous quality score: {score.overall:.2f}"]
    if score.issues:
        lines.append("Issues:")
        lines.extend(f"- {i}" for i in score.issues)
    if score.suggestions:
        lines.append("Suggestions:")
        lines.extend(f"- {s}" for s in score.suggestions)
    return "\n".join(lines)


def legal_variables(params: SiteGenerationParams, aggregate: ResearchAggregate, page_type: str) -> Dict[str, Any]:
    address = aggregate.profile.get("address")
    address_line = Address.model_validate(address).one_line() if isinstance(address, dict) else ""
    return {
        "business_name": params.business_name,
        "page_type": page_type,
        "brand_json": json.dumps(aggregate.brand),
        "business_address": address_line or params.business_address or "",
        "business_email": aggregate.profile.get("email") or "",
        "website_url": aggregate.website_url or "",
    }
