from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

ConformityStatusOut = Literal["conforme", "attention", "non_conforme"]


class ConformityOut(BaseModel):
    score: int
    breakdown: dict[str, int]
    status: ConformityStatusOut


class ScanResponse(BaseModel):
    document_id: uuid.UUID
    status: str
    extraction: dict[str, Any]
    conformity: ConformityOut
    supplier_verification: dict[str, Any] | None = None
    certificate_check: dict[str, Any] | None = None


class ValidateOcrRequest(BaseModel):
    organization_id: uuid.UUID
    ocr_data: dict[str, Any]
    selected_line_ids: list[str] = Field(default_factory=list)
    create_inputs: bool = True


class ExtractedInputOut(BaseModel):
    line_id: str
    input_id: str | None
    status: Literal["validated", "rejected"]


class ValidateOcrResponse(BaseModel):
    document_id: uuid.UUID
    inputs_created: int
    extracted_inputs: list[ExtractedInputOut]


class ConformityCheckRequest(BaseModel):
    product_name: str = Field(min_length=1)
    supplier: str | None = None
    is_bio: bool | None = None


class AnalysisOut(BaseModel):
    reason: str | None
    details: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    regulation_references: list[str] = Field(default_factory=list)


class ConformityCheckResponse(BaseModel):
    status: ConformityStatusOut
    score: int
    band: str
    analysis: AnalysisOut
    source: str


class RegistryVerifyRequest(BaseModel):
    siret: str | None = None
    name: str | None = None
    postal_code: str | None = None


class RegistryOperatorOut(BaseModel):
    id: str
    name: str | None
    siret: str | None
    siren: str | None
    bio_number: str | None
    statut: str
    certifying_body: str | None
    certification_date: str | None
    address: str | None
    postal_code: str | None
    city: str | None
    activities: list[str] = Field(default_factory=list)
    page_url: str | None = None
    certificate_url: str | None = None


class RegistryVerifyResponse(BaseModel):
    found: bool
    operators: list[RegistryOperatorOut] = Field(default_factory=list)
    total: int = 0
    message: str | None = None


class VerificationOut(BaseModel):
    found: bool
    available: bool
    message: str | None
    operator: RegistryOperatorOut | None
    checked_at: datetime | None


class SupplierSearchRequest(BaseModel):
    organization_id: uuid.UUID
    query: str = Field(min_length=2)
    postal_code: str | None = None
    limit: int = Field(default=20, ge=1, le=100)

    @field_validator("query", mode="before")
    @classmethod
    def _strip_query(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value


class SupplierSearchItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    siren: str | None
    siret: str | None
    postal_code: str | None
    city: str | None
    statut_bio: str
    registry_verified: bool
    relevance_score: int = 0


class ScoreComponentOut(BaseModel):
    key: str
    label: str
    score: int
    max_score: int


class ScoreAlertOut(BaseModel):
    kind: str
    message: str
    severity: str


class SecurityScoreResponse(BaseModel):
    organization_id: uuid.UUID
    score: int
    components: list[ScoreComponentOut]
    alerts: list[ScoreAlertOut]
    recommendations: list[str]
    computed_at: datetime


class CertificateOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    supplier_name: str
    certificate_number: str | None
    certifying_body: str | None
    issued_on: date | None
    expires_on: date
    covered_products: list[str] = Field(default_factory=list)
    status: str
    days_until_expiration: int


class CertificateAlertOut(BaseModel):
    supplier_name: str
    kind: str
    message: str
    expiration_date: date | None
    severity: str


class CertificateListResponse(BaseModel):
    certificates: list[CertificateOut]
    alerts: list[CertificateAlertOut]
