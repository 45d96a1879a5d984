"""
Research aggregate - everything the research stages learned about a business.

``ResearchAggregate`` is an immutable snapshot of the five research outputs.
``to_v3`` turns it into the confidence-weighted profile: every leaf is a
``ConfValue``, facts that also arrive from the caller or a mapping-service
lookup are merged (and corroborated), unverifiable model-only claims are
penalised, irrelevant images are dropped, and a provenance block summarises
confidence per section.
"""

import json
import logging
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..confidence import (
    LLM_ONLY_INFERRED_PENALTY,
    PROMINENCE_THRESHOLDS,
    UI_COMPONENT_MIN_CONFIDENCE,
    aggregate_confidence,
    merge,
    section_confidence,
    wrap,
)
from ..models import ConfValue, PlacesData, SourceKind, round2, utc_now_iso

logger = logging.getLogger(__name__)

BUSINESS_IMAGE_KEYWORDS: Dict[str, List[str]] = {
    "barber": ["barber", "haircut", "salon", "shave", "fade", "grooming", "hair", "men"],
    "salon": ["salon", "hair", "beauty", "style", "cut", "color", "women", "nails"],
    "restaurant": ["food", "restaurant", "dining", "meal", "kitchen", "chef", "plate"],
    "dentist": ["dental", "dentist", "teeth", "smile", "clinic", "office"],
    "plumber": ["plumbing", "pipe", "water", "repair", "faucet", "bathroom"],
}

GENERIC_IMAGE_TERMS = (
    "shop", "store", "front", "exterior", "interior", "entrance", "sign",
    "logo", "building", "office", "staff", "team", "professional",
)

V3_SECTIONS = ("identity", "operations", "offerings", "trust", "brand", "marketing", "media", "seo")


def is_image_relevant(alt_text: str, business_type: str, business_name: str) -> bool:
    """Keep an image unless its description clearly belongs to another kind of business."""
    text = (alt_text or "").lower()
    name = (business_name or "").lower()
    if name and name in text:
        return True
    if not text or text in ("photo", "image"):
        return True
    if any(t in text for t in GENERIC_IMAGE_TERMS):
        return True
    type_key = next((k for k in BUSINESS_IMAGE_KEYWORDS if k in (business_type or "").lower()), None)
    if type_key is None:
        return True
    return any(kw in text for kw in BUSINESS_IMAGE_KEYWORDS[type_key])


# ---- value coercion for loose model output ----

def _str(v: Any) -> Optional[str]:
    return v if isinstance(v, str) and v else None


def _num(v: Any) -> Optional[float]:
    if isinstance(v, bool):
        return None
    return v if isinstance(v, (int, float)) and v == v else None


def _list(v: Any) -> List[Dict[str, Any]]:
    return [x for x in v if isinstance(x, dict)] if isinstance(v, list) else []


def _str_list(v: Any) -> List[str]:
    return [x for x in v if isinstance(x, str)] if isinstance(v, list) else []


def _obj(v: Any) -> Dict[str, Any]:
    return v if isinstance(v, dict) else {}


# ---- ConfValue constructors ----

def _llm(value: Any, rationale: str) -> ConfValue:
    return wrap(value, SourceKind.MODEL_GENERATED, rationale=rationale)


def _llm_inferred(value: Any, rationale: str) -> ConfValue:
    base = _llm(value, rationale)
    return base.model_copy(update={"confidence": round2(max(0.0, base.confidence - LLM_ONLY_INFERRED_PENALTY))})


def _places(value: Any, place_id: str, rationale: str) -> ConfValue:
    return wrap(value, SourceKind.MAPPING_SERVICE, rationale=rationale, source_id=place_id)


def _user(value: Any, rationale: str) -> ConfValue:
    return wrap(value, SourceKind.USER_PROVIDED, rationale=rationale)


def _placeholder(value: Any, rationale: str) -> ConfValue:
    return wrap(value, SourceKind.INTERNAL_INFERENCE, rationale=rationale, is_placeholder=True)


_CSS_PLACEHOLDER_IMAGE = {
    "url": None, "search_query": "", "alt_text": "", "source": "css_placeholder",
    "license": "", "width": 0, "height": 0, "aspect_ratio": "16:9",
}


class UserInputs(BaseModel):
    business_name: str
    business_address: Optional[str] = None
    business_phone: Optional[str] = None


class ResearchAggregate(BaseModel):
    """Immutable snapshot of the profile and parallel research outputs."""
    model_config = ConfigDict(frozen=True)

    profile: Dict[str, Any]
    social: Dict[str, Any] = Field(default_factory=dict)
    brand: Dict[str, Any] = Field(default_factory=dict)
    selling_points: Dict[str, Any] = Field(default_factory=dict)
    images: Dict[str, Any] = Field(default_factory=dict)

    @property
    def business_type(self) -> str:
        return _str(self.profile.get("business_type")) or "general"

    @property
    def website_url(self) -> Optional[str]:
        return _str(self.social.get("website_url")) or _str(self.profile.get("website_url"))

    def prompt_variables(self) -> Dict[str, str]:
        """JSON-encoded sections for the generation prompt"""
        return {
            "profile_json": json.dumps(self.profile, ensure_ascii=False),
            "social_json": json.dumps(self.social, ensure_ascii=False),
            "brand_json": json.dumps(self.brand, ensure_ascii=False),
            "selling_points_json": json.dumps(self.selling_points, ensure_ascii=False),
            "images_json": json.dumps(self.images, ensure_ascii=False),
        }

    def to_v3(self, user_inputs: UserInputs, places: Optional[PlacesData] = None) -> Dict[str, Any]:
        """Build the confidence-weighted v3 profile."""
        p, s, b, sp, img = self.profile, self.social, self.brand, self.selling_points, self.images
        g = places
        name = user_inputs.business_name
        warnings: List[str] = []

        # ---- identity ----
        phone = _llm(_str(p.get("phone")), "Model-inferred phone")
        if user_inputs.business_phone:
            phone = merge(phone, _user(user_inputs.business_phone, "User provided phone"))
        if g and g.phone:
            phone = merge(phone, _places(g.phone, g.place_id, "Mapping service phone"))
        if not phone.value:
            warnings.append("Missing: phone number")

        email = _llm(_str(p.get("email")), "Model-inferred email")
        if not email.value:
            warnings.append("Missing: email address")

        website = _llm(self.website_url, "Model-inferred website")
        if g and g.website:
            website = merge(website, _places(g.website, g.place_id, "Mapping service website"))
        if not website.value:
            warnings.append("Missing: website URL")

        hours = _llm([
            {"day": _str(h.get("day")), "open": _str(h.get("open")), "close": _str(h.get("close")),
             "closed": bool(h.get("closed"))}
            for h in _list(p.get("hours"))
        ], "Model-inferred operating hours")
        if g and g.hours:
            hours = merge(hours, _places(g.hours, g.place_id, "Mapping service verified hours"))

        geo = _llm(p.get("geo") if isinstance(p.get("geo"), dict) else None, "Model-inferred coordinates")
        if g and g.geo:
            geo = merge(geo, _places(g.geo, g.place_id, "Mapping service coordinates"))
        if not geo.value:
            warnings.append("Missing: geo coordinates (lat/lng)")

        raw_addr = _obj(p.get("address"))
        address_value = {
            "street": _str(raw_addr.get("street")),
            "city": _str(raw_addr.get("city")),
            "state": _str(raw_addr.get("state")),
            "zip": _str(raw_addr.get("zip")),
            "country": _str(raw_addr.get("country")) or "US",
        }
        address = _llm(address_value, "Model-inferred address")
        if user_inputs.business_address:
            if not any(address_value[k] for k in ("street", "city", "state", "zip")):
                address_value = dict(address_value, street=user_inputs.business_address)
            address = merge(address, _user(address_value, "User provided address"))

        maps = _llm({"place_id": _str(_obj(p.get("google")).get("place_id")),
                     "maps_url": _str(_obj(p.get("google")).get("maps_url"))}, "Model-inferred map identity")
        if g:
            maps = merge(maps, _places({"place_id": g.place_id, "maps_url": g.maps_url or ""},
                                       g.place_id, "Mapping service verified identity"))

        identity = {
            "business_name": _llm(_str(p.get("business_name")) or name, "Business name from input"),
            "tagline": _llm(_str(p.get("tagline")), "Model-generated tagline"),
            "description": _llm(_str(p.get("description")), "Model-generated description"),
            "business_type": _llm(self.business_type, "Model-inferred type"),
            "categories": _llm(_str_list(p.get("categories")), "Model-inferred categories"),
            "phone": phone,
            "email": email,
            "website_url": website,
            "address": address,
            "geo": geo,
            "google": maps,
            "neighborhood": _llm(_str(p.get("neighborhood")), "Model-inferred neighborhood"),
        }

        # ---- operations ----
        booking = _obj(p.get("booking"))
        if not booking.get("url"):
            warnings.append("Missing: booking URL")
        access = _obj(p.get("accessibility"))
        operations = {
            "hours": hours,
            "holiday_hours": _placeholder([], "No holiday hours data available"),
            "booking": _llm({
                "url": _str(booking.get("url")),
                "platform": _str(booking.get("platform")),
                "walkins_accepted": booking.get("walkins_accepted") is not False,
                "appointment_required": bool(booking.get("appointment_required")),
            }, "Model-inferred booking info"),
            "payments": _llm_inferred(_str_list(p.get("payments")), "Model-inferred payment methods, unverified"),
            "amenities": _llm_inferred(_str_list(p.get("amenities")), "Model-inferred amenities, unverified"),
            "accessibility": _llm_inferred({
                "wheelchair": bool(access.get("wheelchair")),
                "service_animals": access.get("service_animals") is not False,
                "notes": _str(access.get("notes")),
            }, "Model-inferred accessibility, unverified"),
            "languages_spoken": _llm_inferred(_str_list(p.get("languages_spoken")), "Model-inferred languages, unverified"),
        }

        # ---- offerings ----
        raw_services = _list(p.get("services"))
        offerings = {
            "services": _llm([
                {
                    "name": _llm(_str(svc.get("name")), "Model-generated service name"),
                    "description": _llm(_str(svc.get("description")), "Model-generated service description"),
                    "price_hint": _llm(_str(svc.get("price_hint")), "Model-estimated price range"),
                    "duration_minutes": _llm(_num(svc.get("duration_minutes")), "Model-estimated duration"),
                }
                for svc in raw_services
            ], "Model-generated service menu"),
            "products_sold": _llm(_str_list(p.get("products_sold")), "Model-inferred products"),
            "faq": _llm([{"question": _str(f.get("question")), "answer": _str(f.get("answer"))}
                         for f in _list(p.get("faq"))], "Model-generated FAQ"),
        }

        # ---- trust ----
        reviews_raw = _obj(p.get("reviews_summary"))
        reviews = _llm({
            "aggregate": {"rating": _num(reviews_raw.get("aggregate_rating")) or 0,
                          "count": _num(reviews_raw.get("review_count")) or 0},
            "featured": [{"quote": _str(r.get("quote")), "name": _str(r.get("name")),
                          "source": _str(r.get("source")) or "Google"}
                         for r in _list(reviews_raw.get("featured_reviews"))],
        }, "Model-inferred reviews")
        if g and (g.rating or g.reviews):
            reviews = merge(reviews, _places({
                "aggregate": {"rating": g.rating or 0, "count": g.review_count or 0},
                "featured": [{"quote": r.get("text", "")[:200], "name": r.get("author", ""), "source": "Google"}
                             for r in g.reviews[:3]],
            }, g.place_id, "Mapping service reviews"))
        if not reviews.value["aggregate"]["count"]:
            warnings.append("Missing: customer reviews")

        social_links = [
            {"platform": _str(link.get("platform")), "url": _str(link.get("url")),
             "confidence": _num(link.get("confidence")) if _num(link.get("confidence")) is not None else 0.5}
            for link in _list(s.get("social_links"))
        ]
        trust = {
            "team": _llm([
                {"name": _llm(_str(m.get("name")), "Model-inferred team member"),
                 "role": _llm(_str(m.get("role")), "Model-inferred role"),
                 "headshot_url": _placeholder(None, "No headshot available")}
                for m in _list(p.get("team"))
            ], "Model-inferred team"),
            "reviews": reviews,
            "social_links": _llm(social_links, "Model-inferred social profiles"),
            "review_platforms": _llm([
                {"platform": _str(r.get("platform")), "url": _str(r.get("url")), "rating": r.get("rating")}
                for r in _list(s.get("review_platforms"))
            ], "Model-inferred review platforms"),
            "credentials": _placeholder([], "No credential data"),
        }

        # ---- brand ----
        logo = _obj(b.get("logo"))
        fallback = _obj(logo.get("fallback_design"))
        colors = _obj(b.get("colors"))
        fonts = _obj(b.get("fonts"))
        brand = {
            "logo": _llm({
                "found_online": bool(logo.get("found_online")),
                "search_query": _str(logo.get("search_query")),
                "fallback_design": {
                    "text": _str(fallback.get("text")) or name,
                    "font": _str(fallback.get("font")) or "Inter",
                    "accent_shape": _str(fallback.get("accent_shape")) or "circle",
                    "accent_color": _str(fallback.get("accent_color")) or "#64ffda",
                },
            }, "Model-generated logo guidance"),
            "colors": _llm({
                "primary": _str(colors.get("primary")) or "#2563eb",
                "secondary": _str(colors.get("secondary")) or "#7c3aed",
                "accent": _str(colors.get("accent")) or "#64ffda",
                "background": _str(colors.get("background")) or "#ffffff",
                "surface": _str(colors.get("surface")) or "#f8fafc",
                "text_primary": _str(colors.get("text_primary")) or "#1e293b",
                "text_secondary": _str(colors.get("text_secondary")) or "#64748b",
            }, "Model-generated color palette"),
            "fonts": _llm({"heading": _str(fonts.get("heading")) or "Inter",
                           "body": _str(fonts.get("body")) or "Inter"}, "Model-suggested typography"),
            "brand_personality": _llm(_str(b.get("brand_personality")), "Model-generated brand personality"),
            "style_notes": _llm(_str(b.get("style_notes")), "Model-generated style notes"),
        }

        # ---- marketing ----
        marketing = {
            "selling_points": _llm([
                {"headline": _str(pt.get("headline")), "description": _str(pt.get("description")),
                 "icon": _str(pt.get("icon")) or "star"}
                for pt in _list(sp.get("selling_points"))
            ], "Model-generated selling points"),
            "hero_slogans": _llm([
                {"headline": _str(sl.get("headline")), "subheadline": _str(sl.get("subheadline")),
                 "cta_primary": _obj(sl.get("cta_primary")) or {"text": "Get Started", "action": "#contact"},
                 "cta_secondary": _obj(sl.get("cta_secondary")) or {"text": "Learn More", "action": "#services"}}
                for sl in _list(sp.get("hero_slogans"))
            ], "Model-generated hero slogans"),
            "benefit_bullets": _llm(_str_list(sp.get("benefit_bullets")), "Model-generated benefits"),
        }

        # ---- media ----
        photos = [{"url": _str(ph.get("url")), "alt_text": _str(ph.get("alt_text")) or "", "source": "google"}
                  for ph in _list(s.get("google_business_photos"))]
        if g and g.photos:
            photos = [{"url": ph.get("url"), "alt_text": f"Photo of {name}", "source": "mapping_service"}
                      for ph in g.photos] + photos

        btype = self.business_type
        hero = [hi for hi in _list(img.get("hero_images"))
                if is_image_relevant(_str(hi.get("concept")) or _str(hi.get("alt_text")) or "", btype, name)]
        kept_photos = [ph for ph in photos if is_image_relevant(ph["alt_text"], btype, name)]
        if len(kept_photos) < len(photos):
            logger.info("Dropped %d irrelevant photo(s) for %s", len(photos) - len(kept_photos), name)

        storefront = _obj(img.get("storefront_image"))
        if storefront:
            storefront_conf = _llm({**_CSS_PLACEHOLDER_IMAGE, "url": _str(storefront.get("url")),
                                    "search_query": _str(storefront.get("search_query")) or "",
                                    "alt_text": f"Storefront of {name}", "source": "inference"},
                                   "Model-suggested storefront image")
        else:
            storefront_conf = _placeholder(dict(_CSS_PLACEHOLDER_IMAGE), "No storefront image, use CSS placeholder")

        if kept_photos:
            kind = SourceKind.MAPPING_SERVICE if kept_photos[0]["source"] == "mapping_service" else SourceKind.MODEL_GENERATED
            gallery = wrap(kept_photos, kind,
                           rationale=f"Business photos (filtered for relevance, {len(kept_photos)} of {len(photos)} kept)")
        else:
            gallery = _placeholder([], "No verified business photos, use CSS placeholders")

        media = {
            "hero_images": _llm([
                {"concept": _str(hi.get("concept")), "url": _str(hi.get("url")),
                 "search_query": _str(hi.get("search_query")),
                 "alt_text": _str(hi.get("alt_text")) or _str(hi.get("concept")),
                 "aspect_ratio": _str(hi.get("aspect_ratio")) or "16:9"}
                for hi in hero
            ], "Model-generated hero image concepts (filtered for relevance)"),
            "storefront_image": storefront_conf,
            "service_images": _llm([
                {"service_name": _str(si.get("service_name")) or _str(si.get("name")), "url": None,
                 "search_query": _str(si.get("search_query")), "alt_text": _str(si.get("alt_text"))}
                for si in _list(img.get("service_images"))
            ], "Service image concepts"),
            "gallery": gallery,
            "placeholder_strategy": wrap("css_gradient", SourceKind.INTERNAL_INFERENCE,
                                         rationale="CSS gradients and patterns only, no stock photos"),
        }

        # ---- seo ----
        seo_raw = _obj(p.get("seo"))
        review_count = reviews.value["aggregate"]["count"]
        seo = {
            "title": _llm(_str(seo_raw.get("title")) or _str(p.get("seo_title")) or name, "Model-generated SEO title"),
            "description": _llm(_str(seo_raw.get("description")) or _str(p.get("seo_description")) or "",
                                "Model-generated SEO description"),
            "primary_keywords": _llm(_str_list(seo_raw.get("primary_keywords")), "Model-generated primary keywords"),
            "schema_org": _llm({
                "type": _str(p.get("schema_org_type")) or "LocalBusiness",
                "priceRange": _str(raw_services[0].get("price_hint")) if raw_services else None,
                "sameAs": [link["url"] for link in social_links if link["url"]],
                "aggregateRating": {"ratingValue": reviews.value["aggregate"]["rating"], "reviewCount": review_count}
                if review_count else None,
            }, "Generated schema.org inputs"),
        }

        sections = {
            "identity": identity, "operations": operations, "offerings": offerings, "trust": trust,
            "brand": brand, "marketing": marketing, "media": media, "seo": seo,
        }
        pipeline = ["model_research"] + (["mapping_service"] if g else [])

        return {
            **sections,
            "ui_policy": {
                "component_thresholds": dict(UI_COMPONENT_MIN_CONFIDENCE),
                "prominence_levels": {level.value: t for level, t in PROMINENCE_THRESHOLDS.items()},
            },
            "provenance": {
                "overall_confidence": aggregate_confidence(sections),
                "section_confidence": {k: section_confidence(v) for k, v in sections.items()},
                "warnings": warnings,
                "enrichment_pipeline": pipeline,
                "generated_at": utc_now_iso(),
                "version": "v3",
            },
        }


def dump_v3(tree: Any) -> Any:
    """JSON-ready copy of a v3 tree (ConfValue leaves become plain dicts)."""
    if isinstance(tree, BaseModel):
        return tree.model_dump(mode="json")
    if isinstance(tree, dict):
        return {k: dump_v3(v) for k, v in tree.items()}
    if isinstance(tree, (list, tuple)):
        return [dump_v3(v) for v in tree]
    return tree
