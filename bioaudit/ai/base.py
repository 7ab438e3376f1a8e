from __future__ import annotations


class VisionModel:
    """Generative model able to answer a prompt, optionally about a document."""

    name = "ai"

    async def generate(
        self,
        prompt: str,
        *,
        document: bytes | None = None,
        mime_type: str | None = None,
    ) -> str:
        raise NotImplementedError
