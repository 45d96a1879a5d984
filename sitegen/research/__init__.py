"""Research outputs: per-prompt schemas and the aggregate profile."""

from .aggregate import ResearchAggregate, UserInputs, dump_v3, is_image_relevant
from .schemas import OUTPUT_SCHEMAS, validate_html, validate_output

__all__ = [
    "ResearchAggregate",
    "UserInputs",
    "dump_v3",
    "is_image_relevant",
    "OUTPUT_SCHEMAS",
    "validate_html",
    "validate_output",
]
