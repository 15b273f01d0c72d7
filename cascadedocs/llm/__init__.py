"""AI provider adapters."""

from .responses import parse_json_object
from .runner import LLMRequest, LLMRunner, TextGenerator

__all__ = ["LLMRequest", "LLMRunner", "TextGenerator", "parse_json_object"]
