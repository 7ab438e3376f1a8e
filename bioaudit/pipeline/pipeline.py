"""Scan pipeline: extraction → supplier verification → certificate check → line classification → aggregation.

- Every step writes AuditEvent rows (started / completed / failed + duration).
- Supplier verification is best-effort and runs before classification so the
  supplier's registry status can inform the conformity rules.
- The supplier named on the invoice is looked up in the organization's
  certificates; a missing or expired certificate is reported, never fatal.
- Extraction failures abort the scan and mark the document ``failed``; the
  user can still enter the invoice by hand.
- ``validate`` turns reviewed lines into Input records.
"""
from __future__ import annotations

import logging
import re
import time
import uuid
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from bioaudit.certificates.lifecycle import (
    WARNING_WINDOW_DAYS,
    SupplierCertificateCheck,
    check_supplier_certificate,
)
from bioaudit.conformity.aggregator import ConformityAggregate, aggregate
from bioaudit.conformity.classifier import ConformityClassifier
from bioaudit.db import repository
from bioaudit.db.models import AuditEvent, Document, Input
from bioaudit.extraction.extractor import InvoiceExtractor
from bioaudit.extraction.models import InvoiceExtraction, LineItem
from bioaudit.extraction.normalizer import normalize_extraction
from bioaudit.registry.reconciler import RegistryVerifier, VerificationResult

logger = logging.getLogger(__name__)

ALLOWED_CONTENT_TYPES = frozenset({"image/jpeg", "image/png", "image/webp", "application/pdf"})
DEFAULT_MAX_UPLOAD_BYTES = 10 * 1024 * 1024

# Stems match anywhere in a word, "plant" only as a whole word.
_INPUT_TYPE_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("semence", re.compile(r"semence|graine|\bplants?\b")),
    ("engrais", re.compile(r"engrais|fertilisant|npk|fumier|guano")),
    ("phytosanitaire", re.compile(r"phyto|fongicide|herbicide|insecticide|bouillie")),
    ("amendement", re.compile(r"amendement|chaux|compost|calcaire")),
)


class UnsupportedDocument(ValueError):
    pass


class DocumentTooLarge(ValueError):
    pass


@dataclass(frozen=True)
class ScanOutcome:
    document_id: uuid.UUID
    extraction: InvoiceExtraction
    conformity: ConformityAggregate
    supplier_verification: VerificationResult | None = None
    certificate_check: SupplierCertificateCheck | None = None


@dataclass(frozen=True)
class ValidationOutcome:
    document_id: uuid.UUID
    inputs_created: int
    extracted_inputs: list[dict] = field(default_factory=list)


def infer_input_type(description: str) -> str:
    lowered = description.lower()
    for input_type, pattern in _INPUT_TYPE_PATTERNS:
        if pattern.search(lowered):
            return input_type
    return "autre"


def _parse_date(value: str | None) -> date | None:
    if not value:
        return None
    for fmt in ("%Y-%m-%d", "%d/%m/%Y", "%d-%m-%Y"):
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            continue
    return None


def _decimal(value: float | None) -> Decimal | None:
    return None if value is None else Decimal(str(value))


class ScanPipeline:
    def __init__(
        self,
        session: AsyncSession,
        extractor: InvoiceExtractor | None,
        classifier: ConformityClassifier | None,
        verifier: RegistryVerifier | None = None,
        *,
        max_upload_bytes: int = DEFAULT_MAX_UPLOAD_BYTES,
        certificate_warning_days: int = WARNING_WINDOW_DAYS,
    ) -> None:
        self._session = session
        self._extractor = extractor
        self._classifier = classifier
        self._verifier = verifier
        self._max_upload_bytes = max_upload_bytes
        self._certificate_warning_days = certificate_warning_days

    # ------------------------------------------------------------------ #
    #  Scan                                                               #
    # ------------------------------------------------------------------ #

    async def analyse(
        self,
        organization_id: uuid.UUID,
        filename: str,
        content_type: str,
        content: bytes,
    ) -> ScanOutcome:
        if content_type not in ALLOWED_CONTENT_TYPES:
            raise UnsupportedDocument(
                f"Unsupported content_type={content_type!r}; use JPG, PNG, WebP or PDF"
            )
        if len(content) > self._max_upload_bytes:
            raise DocumentTooLarge(
                f"File too large ({len(content)} bytes, max {self._max_upload_bytes})"
            )

        doc = Document(
            id=uuid.uuid4(),
            organization_id=organization_id,
            filename=filename,
            content_type=content_type,
            size_bytes=len(content),
            status="processing",
        )
        self._session.add(doc)
        await self._session.flush()

        try:
            extraction: InvoiceExtraction = await self._run_step(
                doc,
                step="extraction",
                coro=self._extractor.extract(content, content_type),
            )

            verification = await self._run_step(
                doc,
                step="supplier_verification",
                coro=self._verify_supplier(extraction),
            )
            supplier_status = (
                verification.operator.statut
                if verification is not None and verification.operator is not None
                else None
            )

            certificate_check = await self._run_step(
                doc,
                step="certificate_check",
                coro=self._check_certificate(organization_id, extraction),
            )

            lines: list[LineItem] = await self._run_step(
                doc,
                step="classification",
                coro=self._classifier.classify_lines(
                    extraction.lines, extraction.supplier_name, supplier_status=supplier_status
                ),
            )
            extraction = replace(extraction, lines=lines)
            conformity = aggregate(lines)

            doc.ocr_data = extraction.to_payload()
            doc.conformity = conformity.to_payload()
            doc.supplier_verification = verification.to_payload() if verification else None
            doc.certificate_check = certificate_check.to_payload() if certificate_check else None
            doc.status = "review"

            await self._emit_event(
                doc,
                step="completed",
                status="completed",
                detail=f"lines={len(lines)} score={conformity.score} breakdown={conformity.breakdown}",
            )
            await self._session.commit()

            logger.info(
                "scan_complete",
                extra={
                    "document_id": str(doc.id),
                    "lines": len(lines),
                    "score": conformity.score,
                },
            )
            return ScanOutcome(
                document_id=doc.id,
                extraction=extraction,
                conformity=conformity,
                supplier_verification=verification,
                certificate_check=certificate_check,
            )

        except Exception:
            logger.exception("scan_failed", extra={"document_id": str(doc.id)})
            doc.status = "failed"
            await self._emit_event(doc, step="failed", status="failed", detail="Unhandled exception")
            await self._session.commit()
            raise

    async def _verify_supplier(self, extraction: InvoiceExtraction) -> VerificationResult | None:
        if self._verifier is None:
            return None
        if not extraction.supplier_tax_id and not extraction.supplier_name:
            return None
        return await self._verifier.lookup(
            name=extraction.supplier_name, tax_id=extraction.supplier_tax_id
        )

    async def _check_certificate(
        self, organization_id: uuid.UUID, extraction: InvoiceExtraction
    ) -> SupplierCertificateCheck | None:
        if not extraction.supplier_name:
            return None
        certificates = await repository.list_certificates(
            self._session, organization_id, warning_days=self._certificate_warning_days
        )
        return check_supplier_certificate(extraction.supplier_name, certificates)

    # ------------------------------------------------------------------ #
    #  Review validation                                                  #
    # ------------------------------------------------------------------ #

    async def validate(
        self,
        document_id: uuid.UUID,
        organization_id: uuid.UUID,
        payload: dict,
        selected_line_ids: list[str],
        *,
        create_inputs: bool = True,
    ) -> ValidationOutcome:
        doc = await self._session.get(Document, document_id)
        if not doc or doc.organization_id != organization_id:
            raise ValueError(f"Document {document_id} not found")

        extraction = normalize_extraction(payload)
        purchased_on = _parse_date(extraction.invoice_date) or datetime.now(timezone.utc).date()
        selected = set(selected_line_ids)

        outcomes: list[dict] = []
        created = 0
        if create_inputs:
            for line in extraction.lines:
                if line.id not in selected:
                    continue
                if not line.description:
                    outcomes.append({"line_id": line.id, "input_id": None, "status": "rejected"})
                    continue

                record = self._input_from_line(
                    line, extraction, organization_id, document_id, purchased_on
                )
                self._session.add(record)
                created += 1
                outcomes.append({"line_id": line.id, "input_id": str(record.id), "status": "validated"})

        doc.ocr_data = extraction.to_payload()
        doc.conformity = aggregate(extraction.lines).to_payload()
        doc.ocr_validated = True
        doc.validated_at = datetime.now(timezone.utc)
        doc.extracted_inputs = outcomes
        doc.status = "validated"

        await self._emit_event(
            doc, step="validation", status="completed", detail=f"{created} input(s) created"
        )
        await self._session.commit()

        logger.info(
            "scan_validated",
            extra={"document_id": str(document_id), "inputs_created": created},
        )
        return ValidationOutcome(document_id=document_id, inputs_created=created, extracted_inputs=outcomes)

    @staticmethod
    def _input_from_line(
        line: LineItem,
        extraction: InvoiceExtraction,
        organization_id: uuid.UUID,
        document_id: uuid.UUID,
        purchased_on: date,
    ) -> Input:
        return Input(
            id=uuid.uuid4(),
            organization_id=organization_id,
            document_id=document_id,
            product_name=line.description,
            supplier_name=extraction.supplier_name,
            lot_number=line.lot_number,
            quantity=_decimal(line.quantity) or Decimal("0"),
            unit=line.unit or "unite",
            purchased_on=purchased_on,
            unit_price=_decimal(line.unit_price),
            total_price=_decimal(line.total_price),
            is_bio=bool(line.is_bio),
            input_type=infer_input_type(line.description),
            conformity_status=line.conformity_status,
            conformity_score=line.conformity_score,
            conformity_details=(
                line.conformity_analysis.to_payload() if line.conformity_analysis else None
            ),
            notes=(
                f"Importé automatiquement depuis facture {extraction.invoice_number or 'N/A'}"
                f" - Réf: {line.reference or 'N/A'}"
            ),
        )

    # ------------------------------------------------------------------ #
    #  Audit trail helpers                                                #
    # ------------------------------------------------------------------ #

    async def _emit_event(
        self,
        doc: Document,
        *,
        step: str,
        status: str,
        detail: str | None = None,
        duration_ms: int | None = None,
    ) -> None:
        """Append an AuditEvent row for the document's trail."""
        event = AuditEvent(
            organization_id=doc.organization_id,
            document_id=doc.id,
            entity_type="document",
            entity_id=doc.id,
            step=step,
            status=status,
            detail=detail,
            duration_ms=duration_ms,
        )
        self._session.add(event)
        await self._session.flush()

    async def _run_step(self, doc: Document, *, step: str, coro):
        """Run an async step, emit start/end audit events, and measure duration."""
        await self._emit_event(doc, step=step, status="started")
        t0 = time.monotonic()
        try:
            result = await coro
            duration_ms = int((time.monotonic() - t0) * 1000)
            await self._emit_event(doc, step=step, status="completed", duration_ms=duration_ms)
            return result
        except Exception as exc:
            duration_ms = int((time.monotonic() - t0) * 1000)
            await self._emit_event(
                doc, step=step, status="failed", detail=str(exc), duration_ms=duration_ms
            )
            raise
