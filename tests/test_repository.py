"""Repository helpers with a mocked AsyncSession."""
from __future__ import annotations

import uuid
from datetime import date
from unittest.mock import AsyncMock, MagicMock

import pytest

from bioaudit.db import repository
from bioaudit.db.models import Certificate, Supplier
from bioaudit.registry.reconciler import normalize_query

TODAY = date(2024, 6, 1)
ORG_ID = uuid.uuid4()


def _rows(rows) -> MagicMock:
    result = MagicMock()
    result.all.return_value = rows
    result.scalars.return_value.all.return_value = rows
    return result


@pytest.mark.asyncio
async def test_load_score_snapshot_counts_by_status() -> None:
    session = AsyncMock()
    session.get = AsyncMock(return_value=MagicMock(registry_verified=True))
    session.execute = AsyncMock(side_effect=[
        _rows([("conforme", 8), ("attention", 1), (None, 1)]),
        _rows([("certifie", 3), ("inconnu", 1)]),
        _rows([date(2024, 5, 1), date(2024, 6, 20), date(2025, 1, 1)]),
    ])

    snapshot = await repository.load_score_snapshot(session, ORG_ID, today=TODAY)

    assert snapshot.inputs_total == 10
    assert snapshot.inputs_conforme == 8
    assert snapshot.inputs_non_conforme == 0
    assert snapshot.suppliers_total == 4
    assert snapshot.suppliers_certified == 3
    assert snapshot.certificates_total == 3
    assert snapshot.certificates_expired == 1
    assert snapshot.certificates_expiring == 1
    assert snapshot.organization_verified is True


@pytest.mark.asyncio
async def test_load_score_snapshot_unknown_organization() -> None:
    session = AsyncMock()
    session.get = AsyncMock(return_value=None)
    with pytest.raises(ValueError, match="not found"):
        await repository.load_score_snapshot(session, ORG_ID)


@pytest.mark.asyncio
async def test_list_certificates_refreshes_cached_status() -> None:
    certs = [
        Certificate(supplier_name="A", expires_on=date(2024, 5, 1), status="valide"),
        Certificate(supplier_name="B", expires_on=date(2025, 5, 1), status="valide"),
    ]
    session = AsyncMock()
    session.execute = AsyncMock(return_value=_rows(certs))
    session.flush = AsyncMock()

    listed = await repository.list_certificates(session, ORG_ID, today=TODAY)

    assert [c.supplier_name for c in listed] == ["A", "B"]
    assert [c.status for c in listed] == ["expire", "valide"]
    session.flush.assert_awaited_once()


@pytest.mark.asyncio
async def test_search_suppliers_ranks_results() -> None:
    suppliers = [
        Supplier(name="Les Vergers", city="Thuyas-le-Bourg", postal_code="62000"),
        Supplier(name="Ferme des Thuyas", city="Arleux", postal_code="59151"),
    ]
    session = AsyncMock()
    session.execute = AsyncMock(return_value=_rows(suppliers))

    ranked = await repository.search_suppliers(session, ORG_ID, normalize_query("thuyas 59151"))

    assert [r.supplier.name for r in ranked] == ["Ferme des Thuyas", "Les Vergers"]


@pytest.mark.asyncio
async def test_list_supplier_names() -> None:
    session = AsyncMock()
    session.execute = AsyncMock(return_value=_rows(["Bio Sud", "Ferme des Thuyas"]))
    assert await repository.list_supplier_names(session, ORG_ID) == ["Bio Sud", "Ferme des Thuyas"]
