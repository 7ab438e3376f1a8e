"""AI-based structured extraction for supplier invoices.

The whole document (image or PDF) goes to the configured vision model in a
single call that asks for every invoice line plus a first conformity opinion
per line. The reply is recovered and normalized by ``extraction.normalizer``.

Config:
    AI_PROVIDER=openai         # openai | mock (default: mock)
    OPENAI_API_KEY=...         # required when AI_PROVIDER=openai
    AI_TIMEOUT_SECONDS=45
"""
from __future__ import annotations

import asyncio
import logging

from bioaudit.ai.base import VisionModel
from bioaudit.core.errors import ExternalServiceUnavailable
from bioaudit.extraction.models import InvoiceExtraction
from bioaudit.extraction.normalizer import normalize_extraction, parse_model_json

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Extraction prompt
# ---------------------------------------------------------------------------

INVOICE_EXTRACTION_PROMPT = """\
Tu es un expert en agriculture biologique et en réglementation INAO.
Analyse cette facture et extrais TOUTES les informations de manière structurée.

1. Extrais CHAQUE ligne de produit individuellement.
2. Pour chaque produit, évalue sa conformité au règlement (UE) 2018/848.

Retourne UNIQUEMENT un objet JSON valide (sans markdown):
{
  "fournisseur": "nom du fournisseur",
  "siren_fournisseur": "SIREN si visible",
  "siret_fournisseur": "SIRET si visible",
  "numero_facture": "numéro de facture",
  "date_facture": "YYYY-MM-DD",
  "total_ht": 0.00,
  "total_ttc": 0.00,
  "lignes": [
    {
      "id": "ligne_1",
      "description": "nom complet du produit",
      "quantite": 0,
      "unite": "kg/L/unité/sac",
      "prix_unitaire": 0.00,
      "prix_total": 0.00,
      "tva": 5.5,
      "reference": "référence produit si visible",
      "numero_lot": "numéro de lot si visible",
      "is_bio": true,
      "conformite_status": "conforme/attention/non_conforme",
      "conformite_score": 0,
      "conformite_reason": "raison du statut",
      "confidence": 0.95
    }
  ],
  "raw_text": "texte brut extrait",
  "confidence_score": 0.90
}

Barème du score de conformité (0-100):
- 90-100: produit certifié Bio, aucun doute
- 70-89: probablement conforme, vérification recommandée
- 50-69: dérogation nécessaire ou doute significatif
- 30-49: forte probabilité de non-conformité
- 0-29: produit clairement interdit

Indices de non-conformité: produits phytosanitaires chimiques (glyphosate,
métam-sodium...), engrais de synthèse (ammonitrate, superphosphate...),
OGM, semences traitées non Bio, produits sans mention Bio d'un fournisseur
non certifié.
"""


class InvoiceExtractor:
    def __init__(self, model: VisionModel, timeout: float = 45.0) -> None:
        self._model = model
        self._timeout = timeout

    async def extract(self, document: bytes, mime_type: str) -> InvoiceExtraction:
        """Run extraction on one scanned document.

        Raises:
            ExternalServiceUnavailable: the provider failed or timed out.
            MalformedInput: the reply holds no usable JSON object.
        """
        try:
            reply = await asyncio.wait_for(
                self._model.generate(
                    INVOICE_EXTRACTION_PROMPT, document=document, mime_type=mime_type
                ),
                timeout=self._timeout,
            )
        except ExternalServiceUnavailable:
            raise
        except asyncio.TimeoutError as exc:
            raise ExternalServiceUnavailable(
                self._model.name, f"no reply within {self._timeout:.0f}s"
            ) from exc
        except Exception as exc:
            logger.warning("invoice_extraction_failed", extra={"error": str(exc)})
            raise ExternalServiceUnavailable(self._model.name, str(exc)) from exc

        extraction = normalize_extraction(parse_model_json(reply))
        logger.info(
            "invoice_extraction_complete",
            extra={
                "invoice_number": extraction.invoice_number,
                "lines": len(extraction.lines),
                "confidence": extraction.confidence_score,
            },
        )
        return extraction
