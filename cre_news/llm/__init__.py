"""LLM provider access."""

from .client import LLMClient, parse_json_response

__all__ = ["LLMClient", "parse_json_response"]
