from __future__ import annotations

from bioaudit.ai.base import VisionModel
from bioaudit.ai.mock import MockVisionModel
from bioaudit.core.config import settings


def get_vision_model() -> VisionModel:
    """Return the configured AI model.

    AI_PROVIDER options:
        mock   : canned invoice and verdict replies (dev/test, no deps required)
        openai : OpenAIVisionModel (pip install openai + OPENAI_API_KEY)
    """
    provider = settings.ai_provider.lower().strip()

    if provider == "mock":
        return MockVisionModel()

    if provider == "openai":
        from bioaudit.ai.openai_model import OpenAIVisionModel
        return OpenAIVisionModel(model=settings.llm_model, api_key=settings.openai_api_key)

    raise ValueError(f"Unknown AI_PROVIDER={settings.ai_provider!r}")
