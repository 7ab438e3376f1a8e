"""Turn loosely typed model output into strict extraction records.

The AI provider is asked for bare JSON but regularly wraps it in markdown
fences or adds commentary around it. ``parse_model_json`` recovers the object;
``normalize_extraction`` then reads every field through the safe casts so the
resulting ``InvoiceExtraction`` is fully defined whatever the model returned.
"""
from __future__ import annotations

import json
import logging
from typing import Any

from bioaudit.core.errors import MalformedInput
from bioaudit.core.numbers import round_half_up
from bioaudit.extraction.models import (
    CONFORMITY_STATUSES,
    ConformityAnalysis,
    InvoiceExtraction,
    LineItem,
)
from bioaudit.extraction.safe_cast import (
    safe_array,
    safe_bool,
    safe_mapping,
    safe_number,
    safe_string,
    safe_string_list,
)

logger = logging.getLogger(__name__)


def parse_model_json(text: str) -> dict[str, Any]:
    """Extract the JSON object from a model reply (fences and chatter tolerated)."""
    if not isinstance(text, str):
        raise MalformedInput("Model reply is not text")

    cleaned = text.strip()
    if cleaned.startswith("```json"):
        cleaned = cleaned[7:]
    elif cleaned.startswith("```"):
        cleaned = cleaned[3:]
    if cleaned.endswith("```"):
        cleaned = cleaned[:-3]
    cleaned = cleaned.strip()

    start = cleaned.find("{")
    end = cleaned.rfind("}")
    if start == -1 or end < start:
        raise MalformedInput("No JSON object in model reply", raw=text)

    try:
        data = json.loads(cleaned[start:end + 1])
    except json.JSONDecodeError as exc:
        logger.error("model_json_parse_error", extra={"raw": text[:200]})
        raise MalformedInput(f"Invalid JSON in model reply: {exc.msg}", raw=text) from exc

    if not isinstance(data, dict):
        raise MalformedInput("Model reply is not a JSON object", raw=text)
    return data


def normalize_status(value: Any) -> str | None:
    status = safe_string(value)
    if status is None:
        return None
    status = status.lower().replace("-", "_").replace(" ", "_")
    return status if status in CONFORMITY_STATUSES else None


def normalize_score(value: Any) -> int | None:
    score = safe_number(value)
    if score is None:
        return None
    return max(0, min(100, round_half_up(score)))


def normalize_analysis(value: Any, fallback_reason: Any = None) -> ConformityAnalysis | None:
    raw = safe_mapping(value)
    if raw is None:
        reason = safe_string(fallback_reason)
        return ConformityAnalysis(reason=reason) if reason else None

    references = safe_string_list(raw.get("regulation_references"))
    single_reference = safe_string(raw.get("reglement_reference"))
    if single_reference and single_reference not in references:
        references.append(single_reference)

    return ConformityAnalysis(
        reason=safe_string(raw.get("reason")) or safe_string(fallback_reason),
        details=safe_string_list(raw.get("details")),
        recommendations=safe_string_list(raw.get("recommendations")),
        regulation_references=references,
    )


def normalize_line(raw: Any, index: int) -> LineItem:
    data = safe_mapping(raw) or {}
    return LineItem(
        id=safe_string(data.get("id")) or f"line_{index + 1}",
        description=safe_string(data.get("description"), ""),
        quantity=safe_number(data.get("quantite")),
        unit=safe_string(data.get("unite")),
        unit_price=safe_number(data.get("prix_unitaire")),
        total_price=safe_number(data.get("prix_total")),
        vat_rate=safe_number(data.get("tva")),
        reference=safe_string(data.get("reference")),
        lot_number=safe_string(data.get("numero_lot")),
        is_bio=safe_bool(data.get("is_bio")),
        conformity_status=normalize_status(data.get("conformite_status")),
        conformity_score=normalize_score(data.get("conformite_score")),
        conformity_analysis=normalize_analysis(
            data.get("conformite_analysis"), data.get("conformite_reason")
        ),
        confidence=safe_number(data.get("confidence"), 0.5),
    )


def normalize_extraction(payload: Any) -> InvoiceExtraction:
    if not isinstance(payload, dict):
        raise MalformedInput(f"Extraction payload must be an object, got {type(payload).__name__}")

    lines = [normalize_line(raw, i) for i, raw in enumerate(safe_array(payload.get("lignes")))]

    return InvoiceExtraction(
        supplier_name=safe_string(payload.get("fournisseur")),
        supplier_siren=safe_string(payload.get("siren_fournisseur")),
        supplier_siret=safe_string(payload.get("siret_fournisseur")),
        invoice_number=safe_string(payload.get("numero_facture")),
        invoice_date=safe_string(payload.get("date_facture")),
        total_ht=safe_number(payload.get("total_ht")),
        total_ttc=safe_number(payload.get("total_ttc")),
        lines=lines,
        raw_text=safe_string(payload.get("raw_text")),
        confidence_score=safe_number(payload.get("confidence_score")),
    )
