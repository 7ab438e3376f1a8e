"""Organization-scoped queries used by the scoring and search surfaces."""
from __future__ import annotations

import uuid
from datetime import date

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from bioaudit.certificates.lifecycle import WARNING_WINDOW_DAYS, certificate_status, refresh_statuses
from bioaudit.db.models import Certificate, Input, Organization, Supplier
from bioaudit.registry.reconciler import RankedSupplier, SearchQuery, rank_suppliers
from bioaudit.scoring.security_score import ScoreSnapshot


async def get_organization(session: AsyncSession, organization_id: uuid.UUID) -> Organization | None:
    return await session.get(Organization, organization_id)


async def list_certificates(
    session: AsyncSession,
    organization_id: uuid.UUID,
    *,
    today: date | None = None,
    warning_days: int = WARNING_WINDOW_DAYS,
) -> list[Certificate]:
    """Certificates ordered by expiration, cached statuses refreshed."""
    stmt = (
        select(Certificate)
        .where(Certificate.organization_id == organization_id)
        .order_by(Certificate.expires_on.asc())
    )
    certificates = list((await session.execute(stmt)).scalars().all())
    if refresh_statuses(certificates, today, warning_days=warning_days):
        await session.flush()
    return certificates


async def load_score_snapshot(
    session: AsyncSession,
    organization_id: uuid.UUID,
    *,
    today: date | None = None,
    warning_days: int = WARNING_WINDOW_DAYS,
) -> ScoreSnapshot:
    organization = await session.get(Organization, organization_id)
    if organization is None:
        raise ValueError(f"Organization {organization_id} not found")

    input_rows = (
        await session.execute(
            select(Input.conformity_status, func.count())
            .where(Input.organization_id == organization_id)
            .group_by(Input.conformity_status)
        )
    ).all()
    inputs_by_status = {status: count for status, count in input_rows}

    supplier_rows = (
        await session.execute(
            select(Supplier.statut_bio, func.count())
            .where(Supplier.organization_id == organization_id)
            .group_by(Supplier.statut_bio)
        )
    ).all()
    suppliers_by_status = {status: count for status, count in supplier_rows}

    # Statuses are evaluated here, never read from the cached column.
    expirations = (
        await session.execute(
            select(Certificate.expires_on).where(Certificate.organization_id == organization_id)
        )
    ).scalars().all()
    cert_statuses = [
        certificate_status(expires_on, today, warning_days=warning_days) for expires_on in expirations
    ]

    return ScoreSnapshot(
        inputs_total=sum(inputs_by_status.values()),
        inputs_conforme=inputs_by_status.get("conforme", 0),
        inputs_attention=inputs_by_status.get("attention", 0),
        inputs_non_conforme=inputs_by_status.get("non_conforme", 0),
        suppliers_total=sum(suppliers_by_status.values()),
        suppliers_certified=suppliers_by_status.get("certifie", 0),
        certificates_total=len(cert_statuses),
        certificates_expired=cert_statuses.count("expire"),
        certificates_expiring=cert_statuses.count("a_renouveler"),
        organization_verified=bool(organization.registry_verified),
    )


async def search_suppliers(
    session: AsyncSession,
    organization_id: uuid.UUID,
    query: SearchQuery,
    *,
    limit: int = 20,
) -> list[RankedSupplier]:
    """Candidate suppliers matching any term (name, city, SIREN) or the postal code, ranked."""
    conditions = []
    for term in query.terms:
        pattern = f"%{term}%"
        conditions.extend(
            [Supplier.name.ilike(pattern), Supplier.city.ilike(pattern), Supplier.siren.ilike(pattern)]
        )
    if query.postal_code:
        conditions.append(Supplier.postal_code == query.postal_code)

    stmt = select(Supplier).where(Supplier.organization_id == organization_id)
    if conditions:
        stmt = stmt.where(or_(*conditions))
    stmt = stmt.order_by(Supplier.name).limit(limit)

    suppliers = (await session.execute(stmt)).scalars().all()
    return rank_suppliers(suppliers, query)


async def list_supplier_names(session: AsyncSession, organization_id: uuid.UUID) -> list[str]:
    stmt = (
        select(Supplier.name)
        .where(Supplier.organization_id == organization_id)
        .order_by(Supplier.name)
    )
    return list((await session.execute(stmt)).scalars().all())
