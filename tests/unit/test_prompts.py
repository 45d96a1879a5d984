"""Tests for the prompt registry and renderer."""

import pytest

from sitegen.exceptions import PromptNotFoundError, ValidationError
from sitegen.llm.prompts import PromptRegistry, PromptSpec, registry, render


class TestRegistry:
    def test_default_prompts_registered(self):
        for prompt_id in ("research_profile", "research_social", "research_brand", "research_selling_points",
                          "research_images", "generate_website", "generate_legal_pages", "score_website"):
            assert (prompt_id, 1) in registry

    def test_unknown_version(self):
        with pytest.raises(PromptNotFoundError) as exc:
            registry.resolve("research_profile", 99)
        assert exc.value.version == 99

    def test_latest(self):
        reg = PromptRegistry()
        reg.register(PromptSpec(id="p", version=1, system="s", user="u1"))
        reg.register(PromptSpec(id="p", version=3, system="s", user="u3"))
        assert reg.latest("p").user == "u3"
        assert reg.latest("missing") is None


class TestRender:
    def test_fills_placeholders(self):
        spec = registry.resolve("research_profile", 1)
        prompt = render(spec, {"business_name": "Rise Bakery", "business_phone": "555-0100"})
        assert "Business Name: Rise Bakery" in prompt.user
        assert "Business Phone: 555-0100" in prompt.user
        assert "{{" not in prompt.user
        # Optional inputs render empty
        assert "Business Address: \n" in prompt.user

    def test_missing_required_input(self):
        spec = registry.resolve("research_brand", 1)
        with pytest.raises(ValidationError) as exc:
            render(spec, {"business_name": "Rise Bakery", "business_type": "  "})
        assert "business_type" in str(exc.value)

    def test_lists_rendered_as_json(self):
        spec = PromptSpec(id="p", version=1, system="", user="{{ items }}", required=("items",))
        assert render(spec, {"items": ["a", "b"]}).user == '["a", "b"]'
