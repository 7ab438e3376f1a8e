"""OpenAI-backed vision model.

Config (via .env):
    AI_PROVIDER=openai
    OPENAI_API_KEY=...
    LLM_MODEL=gpt-4o-mini

Images are sent as ``image_url`` parts and PDFs as ``file`` parts, both inline
as base64 data URLs.
"""
from __future__ import annotations

import base64
import logging

from tenacity import retry, retry_if_not_exception_type, stop_after_attempt, wait_exponential

from bioaudit.ai.base import VisionModel
from bioaudit.core.errors import ExternalServiceUnavailable

logger = logging.getLogger(__name__)


class OpenAIVisionModel(VisionModel):
    name = "openai"

    def __init__(self, model: str = "gpt-4o-mini", api_key: str | None = None) -> None:
        self._model = model
        self._api_key = api_key
        self._client = None  # lazy-init to avoid import cost at startup

    def _get_client(self):
        if self._client is None:
            try:
                from openai import AsyncOpenAI  # type: ignore[import]
            except ModuleNotFoundError as exc:
                raise ExternalServiceUnavailable(
                    self.name, "openai package is not installed. Run: pip install openai"
                ) from exc
            if not self._api_key:
                raise ExternalServiceUnavailable(self.name, "OPENAI_API_KEY is not configured")
            self._client = AsyncOpenAI(api_key=self._api_key)
        return self._client

    @staticmethod
    def _document_part(document: bytes, mime_type: str) -> dict:
        data_url = f"data:{mime_type};base64,{base64.b64encode(document).decode('ascii')}"
        if mime_type == "application/pdf":
            return {"type": "file", "file": {"filename": "document.pdf", "file_data": data_url}}
        return {"type": "image_url", "image_url": {"url": data_url}}

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_not_exception_type(ExternalServiceUnavailable),
        reraise=True,
    )
    async def generate(
        self,
        prompt: str,
        *,
        document: bytes | None = None,
        mime_type: str | None = None,
    ) -> str:
        client = self._get_client()

        content: list[dict] = [{"type": "text", "text": prompt}]
        if document is not None:
            content.append(self._document_part(document, mime_type or "application/octet-stream"))

        response = await client.chat.completions.create(
            model=self._model,
            temperature=0.0,
            messages=[{"role": "user", "content": content}],
        )
        text = response.choices[0].message.content or ""
        logger.info(
            "openai_generation_complete",
            extra={"model": self._model, "chars": len(text), "with_document": document is not None},
        )
        return text
