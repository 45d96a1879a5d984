"""
Prompt registry and renderer.

Prompts are addressed by ``(prompt_id, version)``. Templates use
``{{variable}}`` placeholders; required inputs must be present and
non-empty, optional inputs render as empty strings when absent.
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Literal, Optional, Tuple

from ..exceptions import PromptNotFoundError, ValidationError

logger = logging.getLogger(__name__)

_PLACEHOLDER_RE = re.compile(r"\{\{\s*([a-zA-Z_][a-zA-Z0-9_]*)\s*\}\}")


@dataclass(frozen=True)
class PromptSpec:
    id: str
    version: int
    system: str
    user: str
    required: Tuple[str, ...] = ()
    optional: Tuple[str, ...] = ()
    output_format: Literal["json", "html", "text"] = "json"
    temperature: float = 0.3
    max_tokens: int = 4096
    description: str = ""


@dataclass
class RenderedPrompt:
    system: str
    user: str
    temperature: float
    max_tokens: int


def _stringify(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, (list, dict)):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


def render(spec: PromptSpec, variables: Dict[str, Any]) -> RenderedPrompt:
    """Fill a prompt's templates.

    Raises:
        ValidationError: if a required input is missing or empty
    """
    missing = [k for k in spec.required if not _stringify(variables.get(k)).strip()]
    if missing:
        raise ValidationError(f"Prompt {spec.id}@{spec.version} missing required inputs: {', '.join(missing)}",
                              prompt_id=spec.id)

    def sub(template: str) -> str:
        return _PLACEHOLDER_RE.sub(lambda m: _stringify(variables.get(m.group(1))), template)

    return RenderedPrompt(
        system=sub(spec.system),
        user=sub(spec.user),
        temperature=spec.temperature,
        max_tokens=spec.max_tokens,
    )


class PromptRegistry:
    """In-process prompt catalogue keyed by id and version."""

    def __init__(self):
        self._specs: Dict[Tuple[str, int], PromptSpec] = {}

    def register(self, spec: PromptSpec) -> None:
        key = (spec.id, spec.version)
        if key in self._specs:
            logger.warning("Replacing prompt %s@%d", spec.id, spec.version)
        self._specs[key] = spec

    def register_all(self, specs: List[PromptSpec]) -> None:
        for spec in specs:
            self.register(spec)

    def resolve(self, prompt_id: str, version: int) -> PromptSpec:
        try:
            return self._specs[(prompt_id, version)]
        except KeyError:
            raise PromptNotFoundError(prompt_id, version)

    def latest(self, prompt_id: str) -> Optional[PromptSpec]:
        versions = [v for (pid, v) in self._specs if pid == prompt_id]
        return self._specs[(prompt_id, max(versions))] if versions else None

    def __contains__(self, key: Tuple[str, int]) -> bool:
        return key in self._specs

    def __len__(self) -> int:
        return len(self._specs)


_JSON_RULE = "Return only valid JSON. Do not wrap it in prose."
_HTML_RULE = "Return ONLY a complete HTML document starting with <!DOCTYPE html>."

DEFAULT_PROMPTS: List[PromptSpec] = [
    PromptSpec(
        id="research_profile", version=1,
        description="Core business profile: type, services, contact, hours",
        required=("business_name",),
        optional=("business_address", "business_phone", "external_place_id", "additional_context"),
        system=(
            "You research small local businesses from public information.\n"
            "Return JSON with business_name, business_type, description, services [{name, description, price_hint}], "
            "email, phone, website_url, address {street, city, state, zip, country}, hours [{day, open, close, closed}], "
            "payments, amenities, faq, team, reviews_summary, seo.\n"
            "Never fabricate reviews or customer names. " + _JSON_RULE
        ),
        user=(
            "Business Name: {{business_name}}\nBusiness Address: {{business_address}}\n"
            "Business Phone: {{business_phone}}\nPlace ID: {{external_place_id}}\n"
            "Additional Context: {{additional_context}}"
        ),
    ),
    PromptSpec(
        id="research_social", version=1,
        description="Website and social profiles",
        required=("business_name", "business_type"),
        optional=("business_address",),
        system="Find the business website, social profiles and review platforms. "
               "Return JSON with website_url, social_links [{platform, url, confidence}], "
               "review_platforms [{platform, url, rating}], google_business_photos [{url, alt_text}]. " + _JSON_RULE,
        user="Business: {{business_name}} ({{business_type}})\nAddress: {{business_address}}",
    ),
    PromptSpec(
        id="research_brand", version=1,
        description="Logo guidance, palette, typography, personality",
        required=("business_name", "business_type"),
        optional=("business_address", "website_url", "additional_context"),
        system="Describe the brand identity. Return JSON with logo {found_online, search_query, fallback_design}, "
               "colors {primary, secondary, accent, background, surface, text_primary, text_secondary}, "
               "fonts {heading, body}, brand_personality, style_notes. " + _JSON_RULE,
        user="Business: {{business_name}} ({{business_type}})\nAddress: {{business_address}}\n"
             "Website: {{website_url}}\nContext: {{additional_context}}",
        temperature=0.5,
    ),
    PromptSpec(
        id="research_selling_points", version=1,
        description="Selling points, hero slogans, benefit bullets",
        required=("business_name", "business_type"),
        optional=("services_json", "description", "additional_context"),
        system="Write marketing inputs. Return JSON with selling_points [{headline, description, icon}], "
               "hero_slogans [{headline, subheadline, cta_primary, cta_secondary}], benefit_bullets []. " + _JSON_RULE,
        user="Business: {{business_name}} ({{business_type}})\nServices: {{services_json}}\n"
             "Description: {{description}}\nContext: {{additional_context}}",
        temperature=0.6,
    ),
    PromptSpec(
        id="research_images", version=1,
        description="Image concepts for hero, services, storefront",
        required=("business_name", "business_type"),
        optional=("business_address", "services_json", "additional_context"),
        system="Propose imagery. Return JSON with hero_images [{concept, url, search_query, alt_text, aspect_ratio}], "
               "service_images [{service_name, search_query, alt_text}], storefront_image {url, search_query}. " + _JSON_RULE,
        user="Business: {{business_name}} ({{business_type}})\nAddress: {{business_address}}\n"
             "Services: {{services_json}}\nContext: {{additional_context}}",
    ),
    PromptSpec(
        id="generate_website", version=1,
        description="Single-page website from the research aggregate",
        required=("profile_json",),
        optional=("brand_json", "selling_points_json", "social_json", "images_json", "uploads_json",
                  "quality_feedback"),
        output_format="html", temperature=0.2, max_tokens=8192,
        system="You generate clean, mobile-first, accessible single-page websites with embedded CSS. " + _HTML_RULE,
        user="Profile: {{profile_json}}\nBrand: {{brand_json}}\nSelling points: {{selling_points_json}}\n"
             "Social: {{social_json}}\nImages: {{images_json}}\nUploaded assets: {{uploads_json}}\n"
             "Reviewer feedback on the previous attempt: {{quality_feedback}}",
    ),
    PromptSpec(
        id="generate_legal_pages", version=1,
        description="Privacy policy or terms of service page",
        required=("business_name", "page_type"),
        optional=("brand_json", "business_address", "business_email", "website_url"),
        output_format="html", temperature=0.1, max_tokens=6144,
        system="You write plain-language legal pages for small businesses. " + _HTML_RULE,
        user="Page: {{page_type}}\nBusiness: {{business_name}}\nAddress: {{business_address}}\n"
             "Email: {{business_email}}\nWebsite: {{website_url}}\nBrand: {{brand_json}}",
    ),
    PromptSpec(
        id="score_website", version=1,
        description="Quality review of generated HTML",
        required=("html_content",),
        optional=("business_name",),
        temperature=0.1, max_tokens=1024,
        system="You review generated websites. Score accuracy, completeness, professionalism, seo and "
               "accessibility from 0.0 to 1.0. Return JSON "
               '{"scores": {...}, "overall": number, "issues": [], "suggestions": []}. ' + _JSON_RULE,
        user="Business: {{business_name}}\n\n{{html_content}}",
    ),
]

registry = PromptRegistry()
registry.register_all(DEFAULT_PROMPTS)
