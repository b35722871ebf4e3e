"""LLM access: provider-dispatching completion client and model fallback."""

from aginews.llm.client import LLMClient, LLMError
from aginews.llm.fallback import ModelFallbackChain

__all__ = ["LLMClient", "LLMError", "ModelFallbackChain"]
