"""End-to-end scan pipeline test: fully mocked DB, mock AI model."""
from __future__ import annotations

import json
import uuid
from datetime import date, timedelta
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from bioaudit.ai.base import VisionModel
from bioaudit.ai.mock import MockVisionModel
from bioaudit.conformity.classifier import ConformityClassifier
from bioaudit.core.errors import ExternalServiceUnavailable
from bioaudit.db.models import AuditEvent, Certificate, Document, Input
from bioaudit.extraction.extractor import InvoiceExtractor
from bioaudit.pipeline.pipeline import (
    DocumentTooLarge,
    ScanPipeline,
    UnsupportedDocument,
    infer_input_type,
)
from bioaudit.registry.client import UNAVAILABLE_MESSAGE
from bioaudit.registry.operators import RegistryOperator
from bioaudit.registry.reconciler import VerificationResult

ORG_ID = uuid.uuid4()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class BrokenModel(VisionModel):
    name = "broken"

    async def generate(self, prompt, *, document=None, mime_type=None) -> str:
        raise ExternalServiceUnavailable(self.name, "quota exceeded")


class InvoiceModel(VisionModel):
    """Reads every document as the given invoice."""

    name = "invoice"

    def __init__(self, invoice: dict) -> None:
        self.invoice = invoice

    async def generate(self, prompt, *, document=None, mime_type=None) -> str:
        return json.dumps(self.invoice, ensure_ascii=False)


def _make_session(doc=None, certificates=()) -> AsyncMock:
    certificate_rows = MagicMock()
    certificate_rows.scalars.return_value.all.return_value = list(certificates)

    session = AsyncMock()
    session.get = AsyncMock(return_value=doc)
    session.execute = AsyncMock(return_value=certificate_rows)
    session.flush = AsyncMock()
    session.commit = AsyncMock()
    session.add = MagicMock()
    return session


def _added(session, kind) -> list:
    return [c.args[0] for c in session.add.call_args_list if isinstance(c.args[0], kind)]


def _pipeline(session, model=None, verifier=None, **kwargs) -> ScanPipeline:
    model = model or MockVisionModel()
    return ScanPipeline(
        session, InvoiceExtractor(model), ConformityClassifier(MockVisionModel()), verifier, **kwargs
    )


def _operator() -> RegistryOperator:
    return RegistryOperator(
        id="48211",
        name="Ferme des Thuyas",
        siret=None,
        siren="812345678",
        bio_number="FR-BIO-01-48211",
        statut="certifie",
        certifying_body="Ecocert",
        certification_date=None,
        address=None,
        postal_code="59151",
        city="Arleux",
    )


def _verifier(result: VerificationResult) -> MagicMock:
    verifier = MagicMock()
    verifier.lookup = AsyncMock(return_value=result)
    return verifier


# ---------------------------------------------------------------------------
# analyse
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_scan_extracts_classifies_and_aggregates() -> None:
    """Ecocert seed line is settled by rules (95), compost line by the model (65)."""
    session = _make_session()
    outcome = await _pipeline(session).analyse(ORG_ID, "facture.pdf", "application/pdf", b"%PDF")

    first, second = outcome.extraction.lines
    assert (first.conformity_status, first.conformity_score) == ("conforme", 95)
    assert (second.conformity_status, second.conformity_score) == ("attention", 65)
    assert outcome.conformity.score == 80
    assert outcome.conformity.breakdown == {"conforme": 1, "attention": 1, "non_conforme": 0}

    doc = _added(session, Document)[0]
    assert doc.status == "review"
    assert doc.organization_id == ORG_ID
    assert doc.conformity["score"] == 80
    assert doc.ocr_data["lignes"][0]["conformite_status"] == "conforme"
    assert outcome.document_id == doc.id
    session.commit.assert_called()


@pytest.mark.asyncio
async def test_scan_certified_line_and_synthetic_pesticide() -> None:
    invoice = {
        "fournisseur": "Coop Agri Nord",
        "lignes": [
            {"description": "Semences blé tendre Bio certifiées Ecocert", "is_bio": True},
            {"description": "Désherbant glyphosate 360"},
        ],
    }
    session = _make_session()
    outcome = await _pipeline(session, model=InvoiceModel(invoice)).analyse(
        ORG_ID, "facture.pdf", "application/pdf", b"%PDF"
    )

    certified, pesticide = outcome.extraction.lines
    assert certified.conformity_status == "conforme"
    assert certified.conformity_score >= 80
    assert pesticide.conformity_status == "non_conforme"
    assert pesticide.conformity_score < 40
    assert pesticide.conformity_score < outcome.conformity.score < certified.conformity_score
    assert outcome.conformity.breakdown == {"conforme": 1, "attention": 0, "non_conforme": 1}


@pytest.mark.asyncio
async def test_scan_writes_audit_trail() -> None:
    session = _make_session()
    await _pipeline(session).analyse(ORG_ID, "facture.pdf", "application/pdf", b"%PDF")

    trail = [(e.step, e.status) for e in _added(session, AuditEvent)]
    assert trail[:2] == [("extraction", "started"), ("extraction", "completed")]
    assert ("certificate_check", "completed") in trail
    assert ("classification", "completed") in trail
    assert trail[-1] == ("completed", "completed")


@pytest.mark.asyncio
async def test_scan_rejects_unsupported_type() -> None:
    session = _make_session()
    with pytest.raises(UnsupportedDocument):
        await _pipeline(session).analyse(ORG_ID, "facture.docx", "application/msword", b"x")
    session.add.assert_not_called()


@pytest.mark.asyncio
async def test_scan_rejects_oversize_file() -> None:
    session = _make_session()
    with pytest.raises(DocumentTooLarge):
        await _pipeline(session, max_upload_bytes=10).analyse(ORG_ID, "a.png", "image/png", b"x" * 11)


@pytest.mark.asyncio
async def test_scan_marks_failed_when_extraction_fails() -> None:
    session = _make_session()
    with pytest.raises(ExternalServiceUnavailable):
        await _pipeline(session, model=BrokenModel()).analyse(ORG_ID, "a.png", "image/png", b"x")

    doc = _added(session, Document)[0]
    assert doc.status == "failed"
    statuses = [(e.step, e.status) for e in _added(session, AuditEvent)]
    assert ("extraction", "failed") in statuses
    assert ("failed", "failed") in statuses
    session.commit.assert_called()


@pytest.mark.asyncio
async def test_scan_stores_supplier_verification() -> None:
    session = _make_session()
    verifier = _verifier(VerificationResult(found=True, operator=_operator()))
    outcome = await _pipeline(session, verifier=verifier).analyse(
        ORG_ID, "facture.pdf", "application/pdf", b"%PDF"
    )

    verifier.lookup.assert_awaited_once_with(name="Ferme des Thuyas", tax_id="812345678")
    assert outcome.supplier_verification.found
    doc = _added(session, Document)[0]
    assert doc.supplier_verification["operator"]["statut"] == "certifie"


@pytest.mark.asyncio
async def test_scan_survives_unavailable_registry() -> None:
    session = _make_session()
    verifier = _verifier(VerificationResult(found=False, available=False, message=UNAVAILABLE_MESSAGE))
    outcome = await _pipeline(session, verifier=verifier).analyse(
        ORG_ID, "facture.pdf", "application/pdf", b"%PDF"
    )
    assert outcome.conformity.score == 80
    assert _added(session, Document)[0].supplier_verification["available"] is False


@pytest.mark.asyncio
async def test_scan_reports_missing_supplier_certificate() -> None:
    session = _make_session()
    outcome = await _pipeline(session).analyse(ORG_ID, "facture.pdf", "application/pdf", b"%PDF")

    assert outcome.certificate_check.exists is False
    assert outcome.certificate_check.message == "Certificat manquant pour Ferme des Thuyas"
    assert _added(session, Document)[0].certificate_check["exists"] is False


@pytest.mark.asyncio
async def test_scan_finds_supplier_certificate() -> None:
    expires_on = date.today() + timedelta(days=365)
    cert = Certificate(supplier_name="EARL Ferme des Thuyas", expires_on=expires_on, status="valide")
    session = _make_session(certificates=[cert])
    outcome = await _pipeline(session).analyse(ORG_ID, "facture.pdf", "application/pdf", b"%PDF")

    check = outcome.certificate_check
    assert (check.exists, check.expired, check.expiration_date) == (True, False, expires_on)
    assert _added(session, Document)[0].certificate_check["expiration_date"] == expires_on.isoformat()


# ---------------------------------------------------------------------------
# validate
# ---------------------------------------------------------------------------

REVIEWED = {
    "fournisseur": "Ferme des Thuyas",
    "numero_facture": "FA-2024-0153",
    "date_facture": "12/03/2024",
    "lignes": [
        {"id": "ligne_1", "description": "Semences blé tendre Bio", "quantite": 25, "unite": "kg",
         "prix_unitaire": 4.5, "is_bio": True, "reference": "SB-25",
         "conformite_status": "conforme", "conformite_score": 95},
        {"id": "ligne_2", "description": "Compost de déchets verts", "quantite": 2,
         "conformite_status": "attention", "conformite_score": 65},
        {"id": "ligne_3", "description": "", "quantite": 1},
    ],
}


def _stored_doc(org_id=ORG_ID) -> Document:
    return Document(id=uuid.uuid4(), organization_id=org_id, filename="facture.pdf", status="review")


@pytest.mark.asyncio
async def test_validate_creates_inputs_for_selected_lines() -> None:
    doc = _stored_doc()
    session = _make_session(doc)
    pipeline = ScanPipeline(session, None, None)

    outcome = await pipeline.validate(doc.id, ORG_ID, REVIEWED, ["ligne_1", "ligne_3"])

    assert outcome.inputs_created == 1
    assert [o["status"] for o in outcome.extracted_inputs] == ["validated", "rejected"]

    created = _added(session, Input)
    assert len(created) == 1
    record = created[0]
    assert record.product_name == "Semences blé tendre Bio"
    assert record.input_type == "semence"
    assert record.purchased_on == date(2024, 3, 12)
    assert record.quantity == Decimal("25")
    assert record.unit_price == Decimal("4.5")
    assert record.is_bio is True
    assert record.conformity_status == "conforme"
    assert record.notes == "Importé automatiquement depuis facture FA-2024-0153 - Réf: SB-25"
    assert record.document_id == doc.id

    assert doc.status == "validated"
    assert doc.ocr_validated is True
    assert doc.validated_at is not None
    assert doc.conformity["score"] == 80
    session.commit.assert_called()


@pytest.mark.asyncio
async def test_validate_without_input_creation() -> None:
    doc = _stored_doc()
    session = _make_session(doc)
    outcome = await ScanPipeline(session, None, None).validate(
        doc.id, ORG_ID, REVIEWED, ["ligne_1"], create_inputs=False
    )
    assert outcome.inputs_created == 0
    assert _added(session, Input) == []
    assert doc.status == "validated"


@pytest.mark.asyncio
async def test_validate_missing_document() -> None:
    session = _make_session(None)
    with pytest.raises(ValueError, match="not found"):
        await ScanPipeline(session, None, None).validate(uuid.uuid4(), ORG_ID, REVIEWED, [])


@pytest.mark.asyncio
async def test_validate_other_organization_document() -> None:
    doc = _stored_doc(org_id=uuid.uuid4())
    session = _make_session(doc)
    with pytest.raises(ValueError, match="not found"):
        await ScanPipeline(session, None, None).validate(doc.id, ORG_ID, REVIEWED, ["ligne_1"])


@pytest.mark.parametrize(
    "description, expected",
    [("Semences de trèfle", "semence"), ("Engrais NPK 6-4-10", "engrais"),
     ("Fongicide cuivre", "phytosanitaire"), ("Chaux vive", "amendement"),
     ("Plants de fraisier Bio", "semence"), ("Engrais liquide pour plantes vertes", "engrais"),
     ("Ficelle de botteleuse", "autre")],
)
def test_infer_input_type(description, expected) -> None:
    assert infer_input_type(description) == expected
