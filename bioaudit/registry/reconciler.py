"""Supplier / operator verification against the organic-operator registry.

Two independent paths live here:

* registry verification: look a supplier (or the farm itself) up in the
  registry and merge the verified attributes back into the local record;
* local ranking: order already-stored suppliers by relevance to a free-text
  query.

Verification is best-effort. An unreachable registry, or one returning
garbage, yields ``found=False`` with a message and never an exception.
"""
from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from bioaudit.core.errors import ExternalServiceUnavailable, MalformedInput, ServiceOutcome
from bioaudit.db.models import AuditEvent, Organization, Supplier
from bioaudit.registry.client import UNAVAILABLE_MESSAGE, RegistryClient, RegistryLookup
from bioaudit.registry.operators import RegistryOperator

logger = logging.getLogger(__name__)

_POSTAL_CODE = re.compile(r"\b(\d{5})\b")


# ---------------------------------------------------------------------------
# Query normalization and local ranking
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SearchQuery:
    text: str
    terms: list[str] = field(default_factory=list)
    postal_code: str | None = None


def normalize_query(text: str, postal_code: str | None = None) -> SearchQuery:
    """Lowercase, collapse whitespace, pull out a 5-digit postal code, split into terms.

    An explicit *postal_code* is only used when the text carries none.
    """
    cleaned = " ".join((text or "").lower().split())
    match = _POSTAL_CODE.search(cleaned)
    extracted = match.group(1) if match else (postal_code.strip() if postal_code else None)
    terms = _POSTAL_CODE.sub(" ", cleaned).split()
    return SearchQuery(text=cleaned, terms=terms, postal_code=extracted or None)


@dataclass(frozen=True)
class RankedSupplier:
    supplier: Supplier
    relevance_score: int


def relevance_score(supplier: Supplier, query: SearchQuery) -> int:
    name = (supplier.name or "").lower()
    city = (supplier.city or "").lower()
    score = 0
    for term in query.terms:
        if term in name:
            score += 3
        if name.startswith(term):
            score += 2
        if term in city:
            score += 1
    if query.postal_code and supplier.postal_code == query.postal_code:
        score += 5
    return score


def rank_suppliers(suppliers: Sequence[Supplier], query: SearchQuery) -> list[RankedSupplier]:
    """Sort by descending relevance; ties keep their input order."""
    ranked = [RankedSupplier(s, relevance_score(s, query)) for s in suppliers]
    return sorted(ranked, key=lambda r: -r.relevance_score)


# ---------------------------------------------------------------------------
# Registry verification
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class VerificationResult:
    found: bool
    operator: RegistryOperator | None = None
    message: str | None = None
    available: bool = True
    checked_at: datetime | None = None

    def to_payload(self) -> dict[str, Any]:
        return {
            "found": self.found,
            "available": self.available,
            "message": self.message,
            "operator": self.operator.to_payload() if self.operator else None,
            "checked_at": self.checked_at.isoformat() if self.checked_at else None,
        }


class RegistryVerifier:
    """Best-effort registry lookup shared by every verification surface."""

    def __init__(self, client: RegistryClient) -> None:
        self._client = client

    async def lookup(
        self,
        *,
        name: str | None = None,
        tax_id: str | None = None,
        postal_code: str | None = None,
    ) -> VerificationResult:
        now = datetime.now(timezone.utc)
        if not name and not tax_id:
            return VerificationResult(found=False, message="SIRET ou nom requis", checked_at=now)

        outcome = await self._search(name=name, tax_id=tax_id, postal_code=postal_code)
        if not outcome.ok:
            return VerificationResult(
                found=False, message=UNAVAILABLE_MESSAGE, available=False, checked_at=now
            )

        lookup: RegistryLookup = outcome.value
        if not lookup.found:
            return VerificationResult(found=False, message=lookup.message, checked_at=now)
        return VerificationResult(found=True, operator=lookup.operators[0], checked_at=now)

    async def _search(
        self, *, name: str | None, tax_id: str | None, postal_code: str | None
    ) -> ServiceOutcome[RegistryLookup]:
        try:
            if tax_id:
                return await self._client.search(siret=tax_id)
            return await self._client.search(name=name, postal_code=postal_code)
        except MalformedInput as exc:
            logger.warning("registry_reply_malformed", extra={"error": str(exc)})
            return ServiceOutcome.failure(ExternalServiceUnavailable(self._client.name, str(exc)))


def apply_verification(supplier: Supplier, result: VerificationResult) -> bool:
    """Merge a registry result into *supplier*; return whether anything was written.

    Only ``statut_bio`` and the verification fields are touched. When the
    registry could not be reached the record is left as it was.
    """
    if not result.available:
        return False

    supplier.last_verified_at = result.checked_at or datetime.now(timezone.utc)
    if not result.found or result.operator is None:
        supplier.registry_verified = False
        return True

    operator = result.operator
    supplier.registry_verified = True
    supplier.registry_id = operator.id
    supplier.statut_bio = operator.statut
    supplier.bio_number = operator.bio_number
    supplier.certifying_body = operator.certifying_body
    supplier.certificate_url = operator.page_url
    return True


def apply_operator_verification(organization: Organization, result: VerificationResult) -> bool:
    if not result.available:
        return False

    organization.registry_verified_at = result.checked_at or datetime.now(timezone.utc)
    if not result.found or result.operator is None:
        organization.registry_verified = False
        return True

    operator = result.operator
    organization.registry_verified = operator.statut in ("certifie", "en_conversion")
    organization.registry_id = operator.id
    if operator.bio_number:
        organization.bio_number = operator.bio_number
    if operator.certifying_body:
        organization.certifying_body = operator.certifying_body
    return True


class SupplierVerifier:
    def __init__(self, session: AsyncSession, verifier: RegistryVerifier) -> None:
        self._session = session
        self._verifier = verifier

    async def verify(self, supplier: Supplier) -> VerificationResult:
        result = await self._verifier.lookup(
            name=supplier.name, tax_id=supplier.siret or supplier.siren
        )
        apply_verification(supplier, result)
        await _record(self._session, supplier.organization_id, "supplier", supplier.id, result)
        logger.info(
            "supplier_verified",
            extra={"supplier_id": str(supplier.id), "found": result.found, "available": result.available},
        )
        return result


class OperatorVerifier:
    def __init__(self, session: AsyncSession, verifier: RegistryVerifier) -> None:
        self._session = session
        self._verifier = verifier

    async def verify(self, organization: Organization) -> VerificationResult:
        result = await self._verifier.lookup(name=organization.name, tax_id=organization.siret)
        apply_operator_verification(organization, result)
        await _record(self._session, organization.id, "organization", organization.id, result)
        logger.info(
            "organization_verified",
            extra={"organization_id": str(organization.id), "found": result.found},
        )
        return result


async def _record(
    session: AsyncSession,
    organization_id,
    entity_type: str,
    entity_id,
    result: VerificationResult,
) -> None:
    if not result.available:
        status = "failed"
    else:
        status = "completed" if result.found else "not_found"
    session.add(
        AuditEvent(
            organization_id=organization_id,
            entity_type=entity_type,
            entity_id=entity_id,
            step="registry_verification",
            status=status,
            detail=result.message or (result.operator.name if result.operator else None),
        )
    )
    await session.flush()
