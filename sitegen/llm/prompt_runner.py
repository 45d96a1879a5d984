"""
Prompt runner - the engine's only view of language-model invocation.

``PromptRunner`` is the collaborator interface; ``HttpPromptRunner`` talks to
any OpenAI-compatible ``/chat/completions`` endpoint. Retries are not done
here: every call already runs inside a StepExecutor attempt.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol, runtime_checkable

import httpx
import structlog

from ..config.settings import Settings, get_settings
from ..exceptions import ValidationError
from .prompts import PromptRegistry, registry as default_registry, render

logger = structlog.get_logger()


@dataclass(frozen=True)
class PromptResult:
    output: str
    model: str


@runtime_checkable
class PromptRunner(Protocol):
    async def run(self, prompt_id: str, version: int, variables: Dict[str, Any]) -> PromptResult:
        ...


class HttpPromptRunner:
    """OpenAI-compatible chat completion runner"""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        prompts: Optional[PromptRegistry] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.settings = settings or get_settings()
        self.prompts = prompts or default_registry
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=self.settings.LLM_BASE_URL,
            timeout=self.settings.LLM_TIMEOUT_SECONDS,
            headers=self._headers(),
        )

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.settings.LLM_API_KEY:
            headers["Authorization"] = f"Bearer {self.settings.LLM_API_KEY}"
        return headers

    async def run(self, prompt_id: str, version: int, variables: Dict[str, Any]) -> PromptResult:
        spec = self.prompts.resolve(prompt_id, version)
        prompt = render(spec, variables)

        payload = {
            "model": self.settings.LLM_MODEL,
            "messages": [
                {"role": "system", "content": prompt.system},
                {"role": "user", "content": prompt.user},
            ],
            "temperature": prompt.temperature,
            "max_tokens": prompt.max_tokens,
        }
        if spec.output_format == "json":
            payload["response_format"] = {"type": "json_object"}

        logger.debug("prompt.request", prompt_id=prompt_id, version=version, model=self.settings.LLM_MODEL)
        response = await self._client.post("/chat/completions", json=payload)
        response.raise_for_status()
        data = response.json()

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            raise ValidationError(f"Malformed completion response for {prompt_id}", prompt_id=prompt_id)
        if not content:
            raise ValidationError(f"Empty completion for {prompt_id}", prompt_id=prompt_id)

        return PromptResult(output=content, model=data.get("model", self.settings.LLM_MODEL))

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
