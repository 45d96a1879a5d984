"""Tests for the research aggregate and the confidence-weighted v3 profile."""

import json

import pytest

from conftest import BRAND, IMAGES, PROFILE, SELLING_POINTS, SOCIAL
from sitegen.models import ConfValue, PlacesData, SourceKind
from sitegen.research.aggregate import ResearchAggregate, UserInputs, dump_v3, is_image_relevant


@pytest.fixture
def aggregate():
    return ResearchAggregate(profile=PROFILE, social=SOCIAL, brand=BRAND,
                             selling_points=SELLING_POINTS, images=IMAGES)


class TestResearchAggregate:
    def test_is_frozen(self, aggregate):
        with pytest.raises(Exception):
            aggregate.profile = {}

    def test_business_type_and_website(self, aggregate):
        assert aggregate.business_type == "bakery"
        assert aggregate.website_url == "https://rise.example"
        assert ResearchAggregate(profile={}).business_type == "general"

    def test_prompt_variables_are_json(self, aggregate):
        variables = aggregate.prompt_variables()
        assert json.loads(variables["profile_json"])["business_type"] == "bakery"
        assert json.loads(variables["brand_json"]) == BRAND


class TestToV3:

    def test_sections_and_provenance(self, aggregate):
        v3 = aggregate.to_v3(UserInputs(business_name="Rise Bakery"))
        for section in ("identity", "operations", "offerings", "trust", "brand", "marketing", "media", "seo"):
            assert section in v3
            assert section in v3["provenance"]["section_confidence"]
        assert v3["provenance"]["version"] == "v3"
        assert v3["provenance"]["enrichment_pipeline"] == ["model_research"]
        assert 0.0 < v3["provenance"]["overall_confidence"] <= 0.98
        assert v3["ui_policy"]["prominence_levels"]["prominent"] == 0.85

    def test_leaves_are_conf_values(self, aggregate):
        v3 = aggregate.to_v3(UserInputs(business_name="Rise Bakery"))
        phone = v3["identity"]["phone"]
        assert isinstance(phone, ConfValue)
        assert phone.value == "555-0100"
        assert phone.confidence == 0.50

    def test_user_phone_corroborates(self, aggregate):
        v3 = aggregate.to_v3(UserInputs(business_name="Rise Bakery", business_phone="555-0100"))
        phone = v3["identity"]["phone"]
        assert phone.source_kinds == {SourceKind.MODEL_GENERATED, SourceKind.USER_PROVIDED}
        # user source wins (0.90) plus the two-kind boost
        assert phone.confidence == 0.98

    def test_places_data_merged(self, aggregate):
        places = PlacesData(place_id="place-1", phone="555-0199", geo={"lat": 39.8, "lng": -89.6},
                            rating=4.7, review_count=120,
                            reviews=[{"text": "Best bread in town", "author": "Sam"}],
                            photos=[{"url": "https://maps.example/p1.jpg"}])
        v3 = aggregate.to_v3(UserInputs(business_name="Rise Bakery"), places=places)

        assert v3["identity"]["phone"].value == "555-0199"
        assert v3["identity"]["geo"].value == {"lat": 39.8, "lng": -89.6}
        assert v3["trust"]["reviews"].value["aggregate"] == {"rating": 4.7, "count": 120}
        assert v3["media"]["gallery"].value[0]["source"] == "mapping_service"
        assert v3["provenance"]["enrichment_pipeline"] == ["model_research", "mapping_service"]
        assert "Missing: geo coordinates (lat/lng)" not in v3["provenance"]["warnings"]
        assert "Missing: customer reviews" not in v3["provenance"]["warnings"]

    def test_missing_data_warnings(self):
        v3 = ResearchAggregate(profile={"business_type": "bakery"}).to_v3(UserInputs(business_name="Rise"))
        warnings = v3["provenance"]["warnings"]
        for expected in ("Missing: phone number", "Missing: email address", "Missing: website URL",
                         "Missing: geo coordinates (lat/lng)", "Missing: booking URL", "Missing: customer reviews"):
            assert expected in warnings

    def test_user_address_fills_empty_address(self):
        v3 = ResearchAggregate(profile={"business_type": "bakery"}).to_v3(
            UserInputs(business_name="Rise", business_address="1 Main St, Springfield"))
        address = v3["identity"]["address"]
        assert address.value["street"] == "1 Main St, Springfield"
        assert SourceKind.USER_PROVIDED in address.source_kinds

    def test_unverifiable_operations_penalised(self, aggregate):
        v3 = aggregate.to_v3(UserInputs(business_name="Rise Bakery"))
        assert v3["operations"]["payments"].confidence == 0.35
        assert v3["operations"]["holiday_hours"].is_placeholder

    def test_storefront_placeholder(self, aggregate):
        v3 = aggregate.to_v3(UserInputs(business_name="Rise Bakery"))
        storefront = v3["media"]["storefront_image"]
        assert storefront.is_placeholder
        assert storefront.value["source"] == "css_placeholder"

    def test_irrelevant_photos_filtered(self):
        social = {"google_business_photos": [
            {"url": "https://x/1.jpg", "alt_text": "fresh haircut fade"},
            {"url": "https://x/2.jpg", "alt_text": "restaurant kitchen with chef"},
        ]}
        v3 = ResearchAggregate(profile={"business_type": "barber shop"}, social=social).to_v3(
            UserInputs(business_name="Clip Joint"))
        gallery = v3["media"]["gallery"]
        assert [p["url"] for p in gallery.value] == ["https://x/1.jpg"]

    def test_dump_is_json_serialisable(self, aggregate):
        dumped = dump_v3(aggregate.to_v3(UserInputs(business_name="Rise Bakery")))
        text = json.dumps(dumped)
        assert json.loads(text)["identity"]["phone"]["sources"][0]["kind"] == "model_generated"


class TestImageRelevance:
    @pytest.mark.parametrize("alt,btype,expected", [
        ("Clip Joint storefront", "barber", True),
        ("", "barber", True),
        ("shop exterior", "dentist", True),
        ("plate of pasta", "barber", False),
        ("smiling patient in dental chair", "dentist", True),
        ("anything at all", "florist", True),
    ])
    def test_relevance(self, alt, btype, expected):
        assert is_image_relevant(alt, btype, "Clip Joint") is expected
