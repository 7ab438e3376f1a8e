"""Extractor tests: mock model and stub failures, no provider call."""
from __future__ import annotations

import asyncio

import pytest

from bioaudit.ai.base import VisionModel
from bioaudit.ai.mock import MockVisionModel
from bioaudit.core.errors import ExternalServiceUnavailable, MalformedInput
from bioaudit.extraction.extractor import INVOICE_EXTRACTION_PROMPT, InvoiceExtractor
from bioaudit.extraction.models import InvoiceExtraction


class RecordingModel(VisionModel):
    name = "recording"

    def __init__(self, reply: str = "{}") -> None:
        self.reply = reply
        self.calls: list[dict] = []

    async def generate(self, prompt, *, document=None, mime_type=None) -> str:
        self.calls.append({"prompt": prompt, "document": document, "mime_type": mime_type})
        return self.reply


class BrokenModel(VisionModel):
    name = "broken"

    async def generate(self, prompt, *, document=None, mime_type=None) -> str:
        raise ConnectionError("reset by peer")


class HangingModel(VisionModel):
    name = "hanging"

    async def generate(self, prompt, *, document=None, mime_type=None) -> str:
        await asyncio.sleep(5)
        return "{}"


@pytest.mark.asyncio
async def test_extract_returns_invoice_extraction() -> None:
    result = await InvoiceExtractor(MockVisionModel()).extract(b"%PDF", "application/pdf")
    assert isinstance(result, InvoiceExtraction)
    assert result.supplier_name == "Ferme des Thuyas"
    assert result.supplier_tax_id == "812345678"
    assert result.invoice_number == "FA-2024-0153"


@pytest.mark.asyncio
async def test_extract_lines() -> None:
    result = await InvoiceExtractor(MockVisionModel()).extract(b"img", "image/jpeg")
    first, second = result.lines
    assert first.id == "ligne_1"
    assert first.quantity == 25
    assert first.is_bio is True
    assert first.lot_number == "LOT-2403-A"
    assert second.is_bio is None
    assert second.conformity_status is None


@pytest.mark.asyncio
async def test_extract_sends_document_and_prompt() -> None:
    model = RecordingModel('{"fournisseur": "Bio Sud", "lignes": []}')
    await InvoiceExtractor(model).extract(b"bytes", "image/png")
    call = model.calls[0]
    assert call["prompt"] == INVOICE_EXTRACTION_PROMPT
    assert call["document"] == b"bytes"
    assert call["mime_type"] == "image/png"


@pytest.mark.asyncio
async def test_extract_empty_object_gives_empty_extraction() -> None:
    result = await InvoiceExtractor(RecordingModel("{}")).extract(b"x", "image/png")
    assert result.supplier_name is None
    assert result.lines == []


@pytest.mark.asyncio
async def test_extract_unparseable_reply_raises_malformed() -> None:
    with pytest.raises(MalformedInput):
        await InvoiceExtractor(RecordingModel("Document illisible")).extract(b"x", "image/png")


@pytest.mark.asyncio
async def test_extract_provider_error_is_unavailable() -> None:
    with pytest.raises(ExternalServiceUnavailable) as exc_info:
        await InvoiceExtractor(BrokenModel()).extract(b"x", "image/png")
    assert exc_info.value.service == "broken"


@pytest.mark.asyncio
async def test_extract_timeout_is_unavailable() -> None:
    with pytest.raises(ExternalServiceUnavailable, match="no reply"):
        await InvoiceExtractor(HangingModel(), timeout=0.01).extract(b"x", "image/png")
