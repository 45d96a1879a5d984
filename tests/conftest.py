"""Shared fixtures: a scripted prompt runner and in-memory collaborators."""

import json
from typing import Any, Callable, Dict, List, Union

import pytest

from sitegen.config.settings import Settings
from sitegen.llm.prompt_runner import PromptResult
from sitegen.models import SiteGenerationParams
from sitegen.storage.object_store import InMemoryObjectStore
from sitegen.storage.status import InMemoryStatusSink
from sitegen.storage.step_cache import InMemoryStepCache
from sitegen.workflow.log import InMemoryWorkflowLog, SafeWorkflowLog

PROFILE = {
    "business_name": "Rise Bakery",
    "business_type": "bakery",
    "description": "Neighbourhood sourdough bakery",
    "services": [{"name": "bread"}],
    "email": "hello@rise.example",
    "phone": "555-0100",
    "address": {"street": "1 Main St", "city": "Springfield", "state": "IL", "zip": "62701"},
}
SOCIAL = {"website_url": "https://rise.example", "social_links": [{"platform": "instagram", "url": "https://instagram.com/rise"}]}
BRAND = {"colors": {"primary": "#aa5500"}, "fonts": {"heading": "Lora"}, "brand_personality": "warm"}
SELLING_POINTS = {"selling_points": [{"headline": "Baked fresh daily"}], "benefit_bullets": ["Organic flour"]}
IMAGES = {"hero_images": [{"concept": "loaves of bread on a shop counter"}]}

HTML_V1 = "<!DOCTYPE html><html><body><h1>Rise Bakery</h1></body></html>"
HTML_V2 = "<!DOCTYPE html><html><body><h1>Rise Bakery</h1><p>Improved</p></body></html>"
PRIVACY_HTML = "<!DOCTYPE html><html><body>Privacy Policy</body></html>"
TERMS_HTML = "<!DOCTYPE html><html><body>Terms of Service</body></html>"


def score_json(overall: float, **extra: Any) -> str:
    return json.dumps({"overall": overall, "scores": {"accuracy": overall}, "issues": extra.get("issues", []),
                       "suggestions": extra.get("suggestions", [])})


def legal_page(variables: Dict[str, Any]) -> str:
    return PRIVACY_HTML if variables["page_type"] == "privacy" else TERMS_HTML


Response = Union[str, BaseException, Callable[[Dict[str, Any]], str]]


class ScriptedRunner:
    """PromptRunner whose replies are scripted per prompt id.

    Each prompt id maps to a list of replies consumed in order; the last
    reply repeats. A reply may be text, an exception to raise, or a callable
    taking the prompt variables.
    """

    def __init__(self, script: Dict[str, List[Response]]):
        self.script = {k: list(v) for k, v in script.items()}
        self.calls: List[Dict[str, Any]] = []

    async def run(self, prompt_id: str, version: int, variables: Dict[str, Any]) -> PromptResult:
        self.calls.append({"prompt_id": prompt_id, "version": version, "variables": dict(variables)})
        replies = self.script.get(prompt_id)
        if not replies:
            raise AssertionError(f"unexpected prompt {prompt_id}")
        reply = replies.pop(0) if len(replies) > 1 else replies[0]
        if isinstance(reply, BaseException):
            raise reply
        if callable(reply):
            reply = reply(variables)
        return PromptResult(output=reply, model="scripted")

    def count(self, prompt_id: str) -> int:
        return sum(1 for c in self.calls if c["prompt_id"] == prompt_id)

    def calls_for(self, prompt_id: str) -> List[Dict[str, Any]]:
        return [c for c in self.calls if c["prompt_id"] == prompt_id]


def happy_script(**overrides: List[Response]) -> Dict[str, List[Response]]:
    script: Dict[str, List[Response]] = {
        "research_profile": [json.dumps(PROFILE)],
        "research_social": [json.dumps(SOCIAL)],
        "research_brand": [json.dumps(BRAND)],
        "research_selling_points": [json.dumps(SELLING_POINTS)],
        "research_images": [json.dumps(IMAGES)],
        "generate_website": [HTML_V1],
        "generate_legal_pages": [legal_page],
        "score_website": [score_json(0.8)],
    }
    script.update(overrides)
    return script


@pytest.fixture
def settings():
    return Settings(BACKOFF_SCALE=0.0, _env_file=None)


@pytest.fixture
def params():
    return SiteGenerationParams(
        site_id="site-123",
        org_id="org-1",
        business_name="Rise Bakery",
        business_address="1 Main St, Springfield",
    )


@pytest.fixture
def cache():
    return InMemoryStepCache()


@pytest.fixture
def object_store():
    return InMemoryObjectStore()


@pytest.fixture
def status_sink():
    return InMemoryStatusSink()


@pytest.fixture
def audit_sink():
    return InMemoryWorkflowLog()


@pytest.fixture
def workflow_log(audit_sink):
    return SafeWorkflowLog(audit_sink)
