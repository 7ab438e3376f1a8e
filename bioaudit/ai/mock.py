from __future__ import annotations

import json

from bioaudit.ai.base import VisionModel

_MOCK_INVOICE = {
    "fournisseur": "Ferme des Thuyas",
    "siren_fournisseur": "812345678",
    "numero_facture": "FA-2024-0153",
    "date_facture": "2024-03-12",
    "total_ht": 412.5,
    "total_ttc": 435.19,
    "lignes": [
        {
            "id": "ligne_1",
            "description": "Semences blé tendre Bio certifiées Ecocert",
            "quantite": 25,
            "unite": "kg",
            "prix_unitaire": 4.5,
            "prix_total": 112.5,
            "tva": 5.5,
            "is_bio": True,
            "numero_lot": "LOT-2403-A",
            "confidence": 0.94,
        },
        {
            "id": "ligne_2",
            "description": "Fumier de cheval composté",
            "quantite": 2,
            "unite": "t",
            "prix_unitaire": 150.0,
            "prix_total": 300.0,
            "tva": 5.5,
            "is_bio": None,
            "confidence": 0.81,
        },
    ],
    "confidence_score": 0.88,
}

_MOCK_VERDICT = {
    "status": "attention",
    "score": 65,
    "reason": "Produit utilisable sous réserve de justificatif d'origine",
    "details": ["Origine des matières premières non précisée"],
    "recommendations": ["Demander l'attestation d'utilisabilité en AB au fournisseur"],
    "reglement_reference": "Règlement (UE) 2018/848, annexe II",
}


class MockVisionModel(VisionModel):
    name = "mock"

    async def generate(
        self,
        prompt: str,
        *,
        document: bytes | None = None,
        mime_type: str | None = None,
    ) -> str:
        # Fenced like real replies so the JSON recovery path is exercised.
        payload = _MOCK_INVOICE if document is not None else _MOCK_VERDICT
        return f"```json\n{json.dumps(payload, ensure_ascii=False)}\n```"
