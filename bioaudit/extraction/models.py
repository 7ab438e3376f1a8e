from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

ConformityStatus = Literal["conforme", "attention", "non_conforme"]
CONFORMITY_STATUSES: tuple[str, ...] = ("conforme", "attention", "non_conforme")


@dataclass(frozen=True)
class ConformityAnalysis:
    reason: str | None = None
    details: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)
    regulation_references: list[str] = field(default_factory=list)

    def to_payload(self) -> dict[str, Any]:
        return {
            "reason": self.reason,
            "details": list(self.details),
            "recommendations": list(self.recommendations),
            "regulation_references": list(self.regulation_references),
        }


@dataclass(frozen=True)
class LineItem:
    id: str
    description: str = ""
    quantity: float | None = None
    unit: str | None = None
    unit_price: float | None = None
    total_price: float | None = None
    vat_rate: float | None = None
    reference: str | None = None
    lot_number: str | None = None
    is_bio: bool | None = None
    conformity_status: ConformityStatus | None = None
    conformity_score: int | None = None
    conformity_analysis: ConformityAnalysis | None = None
    confidence: float = 0.5

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "description": self.description,
            "quantite": self.quantity,
            "unite": self.unit,
            "prix_unitaire": self.unit_price,
            "prix_total": self.total_price,
            "tva": self.vat_rate,
            "reference": self.reference,
            "numero_lot": self.lot_number,
            "is_bio": self.is_bio,
            "conformite_status": self.conformity_status,
            "conformite_score": self.conformity_score,
            "conformite_analysis": (
                self.conformity_analysis.to_payload() if self.conformity_analysis else None
            ),
            "confidence": self.confidence,
        }


@dataclass(frozen=True)
class InvoiceExtraction:
    supplier_name: str | None = None
    supplier_siren: str | None = None
    supplier_siret: str | None = None
    invoice_number: str | None = None
    invoice_date: str | None = None
    total_ht: float | None = None
    total_ttc: float | None = None
    lines: list[LineItem] = field(default_factory=list)
    raw_text: str | None = None
    confidence_score: float | None = None

    @property
    def supplier_tax_id(self) -> str | None:
        return self.supplier_siret or self.supplier_siren

    def to_payload(self) -> dict[str, Any]:
        """Serialize with the same keys the extraction prompt asks the model for."""
        return {
            "fournisseur": self.supplier_name,
            "siren_fournisseur": self.supplier_siren,
            "siret_fournisseur": self.supplier_siret,
            "numero_facture": self.invoice_number,
            "date_facture": self.invoice_date,
            "total_ht": self.total_ht,
            "total_ttc": self.total_ttc,
            "lignes": [line.to_payload() for line in self.lines],
            "raw_text": self.raw_text,
            "confidence_score": self.confidence_score,
        }
