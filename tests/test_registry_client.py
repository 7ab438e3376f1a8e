"""Registry client tests: requests.get is patched, no network."""
from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest
import requests

from bioaudit.core.errors import MalformedInput
from bioaudit.registry.client import RegistryClient, clean_siret

FICHE_URL = "https://annuaire.agencebio.org/fiche"

OPERATOR_ITEM = {
    "id": 48211,
    "numeroBio": "FR-BIO-01-48211",
    "siret": "81234567800012",
    "raisonSociale": "EARL DES THUYAS",
    "denominationcourante": "Ferme des Thuyas",
    "adressesOperateurs": [{"lieu": "12 route de Lille", "codePostal": "59151", "ville": "Arleux"}],
    "activites": [
        {"nom": "Production", "etatCertificationBio": "ENGAGEE"},
        {"nom": "Distribution", "etatCertificationBio": "ARRETEE"},
    ],
    "certificats": [
        {"organisme": "Certipaq", "dateEngagement": "2018-02-01", "dateArret": "2019-01-01"},
        {"organisme": "Ecocert", "dateEngagement": "2019-03-01", "url": "https://certificat.ecocert.com/x"},
    ],
}


def _response(status_code: int = 200, body=None, text: str | None = None) -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    response.ok = 200 <= status_code < 300
    response.text = text if text is not None else str(body)
    if text is not None:
        response.json.side_effect = ValueError("not json")
    else:
        response.json.return_value = body
    return response


def _client() -> RegistryClient:
    return RegistryClient("https://registry.test/operateurs", FICHE_URL, timeout=2.0)


def test_clean_siret() -> None:
    assert clean_siret("812 345 678-00012") == "81234567800012"


@pytest.mark.asyncio
async def test_search_by_siret_maps_operator() -> None:
    with patch("bioaudit.registry.client.requests.get") as mock_get:
        mock_get.return_value = _response(body={"items": [OPERATOR_ITEM], "total": 1})
        outcome = await _client().search(siret="812 345 678 00012", name="ignored")

    assert outcome.ok
    lookup = outcome.value
    assert lookup.found and lookup.total == 1
    op = lookup.operators[0]
    assert op.id == "48211"
    assert op.name == "Ferme des Thuyas"
    assert op.siren == "812345678"
    assert op.statut == "certifie"
    assert op.certifying_body == "Ecocert"
    assert op.activities == ["Production"]
    assert op.page_url == f"{FICHE_URL}/48211"
    assert op.certificate_url == "https://certificat.ecocert.com/x"

    _, kwargs = mock_get.call_args
    assert kwargs["params"] == {"siret": "81234567800012"}
    assert kwargs["timeout"] == 2.0


@pytest.mark.asyncio
async def test_search_by_name_sends_postal_code() -> None:
    with patch("bioaudit.registry.client.requests.get") as mock_get:
        mock_get.return_value = _response(body={"items": []})
        outcome = await _client().search(name="Thuyas", postal_code="59151")

    assert outcome.ok
    assert not outcome.value.found
    assert outcome.value.message == 'Aucun opérateur Bio trouvé avec le nom "Thuyas"'
    assert mock_get.call_args.kwargs["params"] == {"nom": "Thuyas", "codePostal": "59151"}


@pytest.mark.asyncio
async def test_overflowing_total_falls_back_to_item_count() -> None:
    with patch("bioaudit.registry.client.requests.get") as mock_get:
        mock_get.return_value = _response(body={"items": [OPERATOR_ITEM], "total": float("inf")})
        outcome = await _client().search(siret="81234567800012")

    assert outcome.ok
    assert outcome.value.total == 1


@pytest.mark.asyncio
async def test_search_requires_siret_or_name() -> None:
    with pytest.raises(ValueError):
        await _client().search()


@pytest.mark.asyncio
async def test_http_error_is_failure_outcome() -> None:
    with patch("bioaudit.registry.client.requests.get") as mock_get:
        mock_get.return_value = _response(status_code=503, body={})
        outcome = await _client().search(siret="81234567800012")
    assert not outcome.ok
    assert outcome.error.service == "agence_bio"


@pytest.mark.asyncio
async def test_timeout_is_failure_outcome() -> None:
    with patch("bioaudit.registry.client.requests.get", side_effect=requests.Timeout("slow")):
        outcome = await _client().search(siret="81234567800012")
    assert not outcome.ok


@pytest.mark.asyncio
async def test_non_json_body_raises_malformed() -> None:
    with patch("bioaudit.registry.client.requests.get") as mock_get:
        mock_get.return_value = _response(text="<html>maintenance</html>")
        with pytest.raises(MalformedInput):
            await _client().search(siret="81234567800012")


@pytest.mark.asyncio
async def test_json_array_body_raises_malformed() -> None:
    with patch("bioaudit.registry.client.requests.get") as mock_get:
        mock_get.return_value = _response(body=[OPERATOR_ITEM])
        with pytest.raises(MalformedInput):
            await _client().search(siret="81234567800012")
