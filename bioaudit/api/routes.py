from __future__ import annotations

import logging
import uuid

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from bioaudit.ai.factory import get_vision_model
from bioaudit.certificates.lifecycle import certificate_alerts, days_until_expiration
from bioaudit.conformity.bands import band_for_score
from bioaudit.conformity.classifier import ConformityClassifier
from bioaudit.core.config import settings
from bioaudit.core.errors import ExternalServiceUnavailable, MalformedInput
from bioaudit.db import repository
from bioaudit.db.models import Supplier
from bioaudit.db.session import get_session
from bioaudit.extraction.extractor import InvoiceExtractor
from bioaudit.pipeline.pipeline import DocumentTooLarge, ScanPipeline, UnsupportedDocument
from bioaudit.registry.client import RegistryClient
from bioaudit.registry.reconciler import (
    OperatorVerifier,
    RegistryVerifier,
    SupplierVerifier,
    VerificationResult,
    normalize_query,
)
from bioaudit.schemas import (
    AnalysisOut,
    CertificateAlertOut,
    CertificateListResponse,
    CertificateOut,
    ConformityCheckRequest,
    ConformityCheckResponse,
    ConformityOut,
    ExtractedInputOut,
    RegistryOperatorOut,
    RegistryVerifyRequest,
    RegistryVerifyResponse,
    ScanResponse,
    ScoreAlertOut,
    ScoreComponentOut,
    SecurityScoreResponse,
    SupplierSearchItem,
    SupplierSearchRequest,
    ValidateOcrRequest,
    ValidateOcrResponse,
    VerificationOut,
)
from bioaudit.scoring.security_score import compute_security_score

logger = logging.getLogger(__name__)
router = APIRouter()


# ---------------------------------------------------------------------------
# Collaborators (overridable with app.dependency_overrides)
# ---------------------------------------------------------------------------

def get_registry_client() -> RegistryClient:
    return RegistryClient(
        settings.registry_base_url,
        settings.registry_fiche_url,
        timeout=settings.registry_timeout_seconds,
    )


def get_classifier() -> ConformityClassifier:
    return ConformityClassifier(get_vision_model(), timeout=settings.ai_timeout_seconds)


def get_extractor() -> InvoiceExtractor:
    return InvoiceExtractor(get_vision_model(), timeout=settings.ai_timeout_seconds)


def _verification_out(result: VerificationResult) -> VerificationOut:
    return VerificationOut(
        found=result.found,
        available=result.available,
        message=result.message,
        operator=RegistryOperatorOut(**result.operator.to_payload()) if result.operator else None,
        checked_at=result.checked_at,
    )


@router.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


# ---------------------------------------------------------------------------
# Invoice scan
# ---------------------------------------------------------------------------

@router.post("/ocr/analyze", response_model=ScanResponse)
async def analyze_invoice(
    organization_id: uuid.UUID = Form(...),
    file: UploadFile = File(...),
    session: AsyncSession = Depends(get_session),
    extractor: InvoiceExtractor = Depends(get_extractor),
    classifier: ConformityClassifier = Depends(get_classifier),
    registry: RegistryClient = Depends(get_registry_client),
) -> ScanResponse:
    if not file.filename:
        raise HTTPException(status_code=400, detail="Missing filename")
    if await repository.get_organization(session, organization_id) is None:
        raise HTTPException(status_code=404, detail="Organization not found")

    content = await file.read()
    pipeline = ScanPipeline(
        session,
        extractor,
        classifier,
        RegistryVerifier(registry),
        max_upload_bytes=settings.max_upload_bytes,
        certificate_warning_days=settings.certificate_warning_days,
    )
    try:
        outcome = await pipeline.analyse(
            organization_id, file.filename, file.content_type or "application/octet-stream", content
        )
    except UnsupportedDocument as exc:
        raise HTTPException(status_code=415, detail=str(exc)) from exc
    except DocumentTooLarge as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except MalformedInput as exc:
        raise HTTPException(status_code=502, detail=f"Unreadable AI reply: {exc}") from exc
    except ExternalServiceUnavailable as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc

    logger.info(
        "invoice_analyzed",
        extra={"document_id": str(outcome.document_id), "upload_filename": file.filename},
    )
    return ScanResponse(
        document_id=outcome.document_id,
        status="review",
        extraction=outcome.extraction.to_payload(),
        conformity=ConformityOut(**outcome.conformity.to_payload()),
        supplier_verification=(
            outcome.supplier_verification.to_payload() if outcome.supplier_verification else None
        ),
        certificate_check=(
            outcome.certificate_check.to_payload() if outcome.certificate_check else None
        ),
    )


@router.post("/documents/{document_id}/validate-ocr", response_model=ValidateOcrResponse)
async def validate_ocr(
    document_id: uuid.UUID,
    body: ValidateOcrRequest,
    session: AsyncSession = Depends(get_session),
) -> ValidateOcrResponse:
    # Validation never calls the AI model or the registry.
    pipeline = ScanPipeline(session, extractor=None, classifier=None)
    try:
        outcome = await pipeline.validate(
            document_id,
            body.organization_id,
            body.ocr_data,
            body.selected_line_ids,
            create_inputs=body.create_inputs,
        )
    except MalformedInput as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc

    return ValidateOcrResponse(
        document_id=outcome.document_id,
        inputs_created=outcome.inputs_created,
        extracted_inputs=[ExtractedInputOut(**item) for item in outcome.extracted_inputs],
    )


# ---------------------------------------------------------------------------
# Conformity
# ---------------------------------------------------------------------------

@router.post("/conformity/check", response_model=ConformityCheckResponse)
async def check_conformity(
    body: ConformityCheckRequest,
    classifier: ConformityClassifier = Depends(get_classifier),
) -> ConformityCheckResponse:
    result = await classifier.check(body.product_name, body.supplier, body.is_bio)
    return ConformityCheckResponse(
        status=result.status,
        score=result.score,
        band=band_for_score(result.score).key,
        analysis=AnalysisOut(**result.analysis.to_payload()),
        source=result.source,
    )


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

async def _registry_search(registry: RegistryClient, body: RegistryVerifyRequest) -> RegistryVerifyResponse:
    if not body.siret and not body.name:
        raise HTTPException(status_code=400, detail="SIRET ou nom requis")
    try:
        outcome = await registry.search(siret=body.siret, name=body.name, postal_code=body.postal_code)
    except MalformedInput as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    if not outcome.ok:
        raise HTTPException(status_code=503, detail=str(outcome.error))

    lookup = outcome.value
    return RegistryVerifyResponse(
        found=lookup.found,
        operators=[RegistryOperatorOut(**op.to_payload()) for op in lookup.operators],
        total=lookup.total,
        message=lookup.message,
    )


@router.post("/registry/verify", response_model=RegistryVerifyResponse)
async def verify_registry(
    body: RegistryVerifyRequest,
    registry: RegistryClient = Depends(get_registry_client),
) -> RegistryVerifyResponse:
    return await _registry_search(registry, body)


@router.get("/registry/verify", response_model=RegistryVerifyResponse)
async def verify_registry_query(
    siret: str | None = Query(default=None),
    name: str | None = Query(default=None, alias="nom"),
    postal_code: str | None = Query(default=None, alias="code_postal"),
    registry: RegistryClient = Depends(get_registry_client),
) -> RegistryVerifyResponse:
    return await _registry_search(
        registry, RegistryVerifyRequest(siret=siret, name=name, postal_code=postal_code)
    )


# ---------------------------------------------------------------------------
# Suppliers
# ---------------------------------------------------------------------------

@router.post("/suppliers/search", response_model=list[SupplierSearchItem])
async def search_suppliers(
    body: SupplierSearchRequest,
    session: AsyncSession = Depends(get_session),
) -> list[SupplierSearchItem]:
    query = normalize_query(body.query, body.postal_code)
    ranked = await repository.search_suppliers(session, body.organization_id, query, limit=body.limit)
    return [
        SupplierSearchItem.model_validate(r.supplier).model_copy(
            update={"relevance_score": r.relevance_score}
        )
        for r in ranked
    ]


@router.post("/suppliers/{supplier_id}/verify", response_model=VerificationOut)
async def verify_supplier(
    supplier_id: uuid.UUID,
    organization_id: uuid.UUID = Query(...),
    session: AsyncSession = Depends(get_session),
    registry: RegistryClient = Depends(get_registry_client),
) -> VerificationOut:
    supplier = await session.get(Supplier, supplier_id)
    if supplier is None or supplier.organization_id != organization_id:
        raise HTTPException(status_code=404, detail="Supplier not found")

    result = await SupplierVerifier(session, RegistryVerifier(registry)).verify(supplier)
    return _verification_out(result)


# ---------------------------------------------------------------------------
# Organizations
# ---------------------------------------------------------------------------

@router.post("/organizations/{organization_id}/verify", response_model=VerificationOut)
async def verify_organization(
    organization_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
    registry: RegistryClient = Depends(get_registry_client),
) -> VerificationOut:
    organization = await repository.get_organization(session, organization_id)
    if organization is None:
        raise HTTPException(status_code=404, detail="Organization not found")

    result = await OperatorVerifier(session, RegistryVerifier(registry)).verify(organization)
    return _verification_out(result)


@router.get("/organizations/{organization_id}/security-score", response_model=SecurityScoreResponse)
async def get_security_score(
    organization_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
) -> SecurityScoreResponse:
    try:
        snapshot = await repository.load_score_snapshot(
            session, organization_id, warning_days=settings.certificate_warning_days
        )
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc

    result = compute_security_score(snapshot)
    return SecurityScoreResponse(
        organization_id=organization_id,
        score=result.score,
        components=[ScoreComponentOut(**vars(c)) for c in result.components],
        alerts=[ScoreAlertOut(**vars(a)) for a in result.alerts],
        recommendations=result.recommendations,
        computed_at=result.computed_at,
    )


@router.get("/organizations/{organization_id}/certificates", response_model=CertificateListResponse)
async def get_certificates(
    organization_id: uuid.UUID,
    status: str | None = Query(default=None, pattern="^(valide|a_renouveler|expire)$"),
    session: AsyncSession = Depends(get_session),
) -> CertificateListResponse:
    if await repository.get_organization(session, organization_id) is None:
        raise HTTPException(status_code=404, detail="Organization not found")

    all_certificates = await repository.list_certificates(
        session, organization_id, warning_days=settings.certificate_warning_days
    )
    # The status filter narrows the listing only; alerts cover every certificate.
    certificates = [c for c in all_certificates if status is None or c.status == status]
    alerts = certificate_alerts(
        all_certificates,
        required_suppliers=await repository.list_supplier_names(session, organization_id),
        warning_days=settings.certificate_warning_days,
    )
    return CertificateListResponse(
        certificates=[
            CertificateOut(
                id=c.id,
                supplier_name=c.supplier_name,
                certificate_number=c.certificate_number,
                certifying_body=c.certifying_body,
                issued_on=c.issued_on,
                expires_on=c.expires_on,
                covered_products=c.covered_products or [],
                status=c.status,
                days_until_expiration=days_until_expiration(c.expires_on),
            )
            for c in certificates
        ],
        alerts=[CertificateAlertOut(**vars(a)) for a in alerts],
    )
