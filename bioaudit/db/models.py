from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import JSON, Boolean, Date, DateTime, ForeignKey, Integer, Numeric, String, Text, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    pass


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class Organization(TimestampMixin, Base):
    """A farm (exploitation) and the owner of every other record."""
    __tablename__ = "organizations"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(256))
    bio_number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    siret: Mapped[str | None] = mapped_column(String(14), nullable=True)
    postal_code: Mapped[str | None] = mapped_column(String(10), nullable=True)
    city: Mapped[str | None] = mapped_column(String(128), nullable=True)
    certifying_body: Mapped[str | None] = mapped_column(String(128), nullable=True)

    registry_verified: Mapped[bool] = mapped_column(Boolean, default=False)
    registry_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    registry_verified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Opaque to this package: free | active | pro | enterprise | canceled ...
    subscription_status: Mapped[str | None] = mapped_column(String(32), nullable=True)


class Supplier(TimestampMixin, Base):
    __tablename__ = "suppliers"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("organizations.id", ondelete="CASCADE"), index=True
    )
    name: Mapped[str] = mapped_column(String(256))
    siren: Mapped[str | None] = mapped_column(String(9), nullable=True)
    siret: Mapped[str | None] = mapped_column(String(14), nullable=True)
    address: Mapped[str | None] = mapped_column(String(256), nullable=True)
    postal_code: Mapped[str | None] = mapped_column(String(10), nullable=True)
    city: Mapped[str | None] = mapped_column(String(128), nullable=True)

    # Fields below are the only ones registry verification may overwrite.
    statut_bio: Mapped[str] = mapped_column(String(32), default="inconnu")  # certifie | en_conversion | non_certifie | inconnu
    bio_number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    certifying_body: Mapped[str | None] = mapped_column(String(128), nullable=True)
    registry_verified: Mapped[bool] = mapped_column(Boolean, default=False)
    registry_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    last_verified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    certificate_url: Mapped[str | None] = mapped_column(String(512), nullable=True)

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)


class Document(TimestampMixin, Base):
    """A scanned invoice and its (reviewable) extraction."""
    __tablename__ = "documents"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("organizations.id", ondelete="CASCADE"), index=True
    )
    filename: Mapped[str] = mapped_column(String(512))
    content_type: Mapped[str] = mapped_column(String(128), default="application/pdf")
    size_bytes: Mapped[int] = mapped_column(Integer, default=0)
    status: Mapped[str] = mapped_column(String(32), default="pending")  # pending | processing | review | validated | failed

    ocr_data: Mapped[dict | None] = mapped_column(JSON, nullable=True)  # InvoiceExtraction.to_payload()
    conformity: Mapped[dict | None] = mapped_column(JSON, nullable=True)  # {score, breakdown, status}
    supplier_verification: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    certificate_check: Mapped[dict | None] = mapped_column(JSON, nullable=True)  # SupplierCertificateCheck.to_payload()
    ocr_validated: Mapped[bool] = mapped_column(Boolean, default=False)
    validated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    extracted_inputs: Mapped[list | None] = mapped_column(JSON, nullable=True)  # per-line outcome

    events: Mapped[list[AuditEvent]] = relationship(
        back_populates="document", cascade="all, delete-orphan", order_by="AuditEvent.created_at"
    )


class Input(TimestampMixin, Base):
    """A purchased input (intrant) tracked for traceability."""
    __tablename__ = "inputs"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("organizations.id", ondelete="CASCADE"), index=True
    )
    plot_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)
    document_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("documents.id", ondelete="SET NULL"), nullable=True
    )

    product_name: Mapped[str] = mapped_column(String(512))
    supplier_name: Mapped[str | None] = mapped_column(String(256), nullable=True)
    lot_number: Mapped[str | None] = mapped_column(String(128), nullable=True)
    quantity: Mapped[Decimal] = mapped_column(Numeric(12, 3), default=0)
    unit: Mapped[str] = mapped_column(String(32), default="unite")
    purchased_on: Mapped[date] = mapped_column(Date)
    used_on: Mapped[date | None] = mapped_column(Date, nullable=True)
    unit_price: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    total_price: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    is_bio: Mapped[bool] = mapped_column(Boolean, default=False)
    input_type: Mapped[str] = mapped_column(String(32), default="autre")  # semence | engrais | phytosanitaire | amendement | autre

    conformity_status: Mapped[str | None] = mapped_column(String(16), nullable=True, index=True)
    conformity_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    conformity_details: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)


class Certificate(TimestampMixin, Base):
    __tablename__ = "certificates"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("organizations.id", ondelete="CASCADE"), index=True
    )
    supplier_name: Mapped[str] = mapped_column(String(256))  # loose link, free text
    certificate_number: Mapped[str | None] = mapped_column(String(128), nullable=True)
    certifying_body: Mapped[str | None] = mapped_column(String(128), nullable=True)
    issued_on: Mapped[date | None] = mapped_column(Date, nullable=True)
    expires_on: Mapped[date] = mapped_column(Date)
    covered_products: Mapped[list] = mapped_column(JSON, default=list)
    # Cache of certificate_status(expires_on); refreshed on every read.
    status: Mapped[str] = mapped_column(String(16), default="valide")


# ── Audit trail ──────────────────────────────────────────────────────────────────────
class AuditEvent(Base):
    """Audit trail: scan pipeline steps and registry verifications.

    step values: extraction | classification | supplier_verification | completed
                 | failed | validation | registry_verification
    """
    __tablename__ = "audit_events"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True, index=True)
    document_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("documents.id", ondelete="CASCADE"), nullable=True, index=True
    )
    entity_type: Mapped[str | None] = mapped_column(String(32), nullable=True)  # document | supplier | organization
    entity_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)
    step: Mapped[str] = mapped_column(String(64))
    status: Mapped[str] = mapped_column(String(32))        # started | completed | failed
    detail: Mapped[str | None] = mapped_column(Text, nullable=True)
    duration_ms: Mapped[int | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    document: Mapped[Document | None] = relationship(back_populates="events")
