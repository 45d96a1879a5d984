"""Language-model collaborators: prompt registry, runner and output extraction."""

from .json_extract import extract_json_from_text, parse_quality_text, strip_code_fences
from .prompt_runner import HttpPromptRunner, PromptResult, PromptRunner
from .prompts import PromptRegistry, PromptSpec, registry, render

__all__ = [
    "extract_json_from_text",
    "parse_quality_text",
    "strip_code_fences",
    "HttpPromptRunner",
    "PromptResult",
    "PromptRunner",
    "PromptRegistry",
    "PromptSpec",
    "registry",
    "render",
]
