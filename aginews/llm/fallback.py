"""Ordered model fallback: try each model in turn, stop at the first success."""

from __future__ import annotations

import logging
from typing import List, Sequence, Tuple

from aginews.llm.client import LLMClient, LLMError

logger = logging.getLogger(__name__)

DEFAULT_MODELS = ["gpt-4o", "gpt-4o-mini", "gpt-3.5-turbo"]


class ModelFallbackChain:
    """Capability-equivalent models, largest first."""

    def __init__(self, client: LLMClient, models: Sequence[str] = ()) -> None:
        self.client = client
        self.models: List[str] = list(models) or list(DEFAULT_MODELS)

    async def complete(self, prompt: str) -> Tuple[str, str]:
        """Return ``(text, model_used)``. Raises LLMError when every model fails."""
        errors: List[str] = []
        for model in self.models:
            try:
                text = await self.client.complete(prompt, model)
            except LLMError as e:
                logger.warning("Model %s failed: %s", model, e)
                errors.append(f"{model}: {e}")
                continue
            if len(errors):
                logger.info("Fell back to model %s", model)
            return text, model
        raise LLMError("All models failed: " + "; ".join(errors))
