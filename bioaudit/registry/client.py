"""HTTP client for the organic-operator registry (Agence Bio open data).

Config (via .env):
    REGISTRY_BASE_URL=https://opendata.agencebio.org/api/gouv/operateurs
    REGISTRY_TIMEOUT_SECONDS=10
"""
from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field

import requests

from bioaudit.core.errors import ExternalServiceUnavailable, MalformedInput, ServiceOutcome
from bioaudit.extraction.safe_cast import safe_array, safe_number
from bioaudit.registry.operators import RegistryOperator, map_operator

logger = logging.getLogger(__name__)

UNAVAILABLE_MESSAGE = "Service Agence Bio temporairement indisponible"


@dataclass(frozen=True)
class RegistryLookup:
    found: bool
    operators: list[RegistryOperator] = field(default_factory=list)
    total: int = 0
    message: str | None = None


def clean_siret(value: str) -> str:
    return re.sub(r"[\s-]", "", value)


class RegistryClient:
    name = "agence_bio"

    def __init__(
        self,
        base_url: str,
        fiche_url: str,
        timeout: float = 10.0,
    ) -> None:
        self._base_url = base_url
        self._fiche_url = fiche_url
        self._timeout = timeout

    async def search(
        self,
        *,
        siret: str | None = None,
        name: str | None = None,
        postal_code: str | None = None,
    ) -> ServiceOutcome[RegistryLookup]:
        """Look an operator up by SIRET/SIREN (preferred) or by name.

        Returns a failure outcome when the registry is unreachable or answers
        non-2xx. Raises ``MalformedInput`` when the body is not a JSON object.
        """
        if not siret and not name:
            raise ValueError("SIRET ou nom requis")

        params: dict[str, str] = {}
        if siret:
            params["siret"] = clean_siret(siret)
        else:
            params["nom"] = name.strip()
        if postal_code:
            params["codePostal"] = postal_code

        loop = asyncio.get_event_loop()
        try:
            response = await loop.run_in_executor(None, self._get, params)
        except requests.RequestException as exc:
            logger.warning("registry_unavailable", extra={"error": str(exc), **params})
            return ServiceOutcome.failure(ExternalServiceUnavailable(self.name, str(exc)))

        if not response.ok:
            logger.warning("registry_unavailable", extra={"status_code": response.status_code, **params})
            return ServiceOutcome.failure(
                ExternalServiceUnavailable(self.name, f"HTTP {response.status_code}")
            )

        try:
            data = response.json()
        except ValueError as exc:
            raise MalformedInput("Registry reply is not JSON", raw=response.text) from exc
        if not isinstance(data, dict):
            raise MalformedInput("Registry reply is not a JSON object", raw=response.text)

        operators = [
            map_operator(item, self._fiche_url)
            for item in safe_array(data.get("items"))
            if isinstance(item, dict)
        ]
        logger.info("registry_search_complete", extra={"results": len(operators), **params})

        if not operators:
            message = (
                f"Aucun opérateur Bio trouvé avec le SIRET {siret}"
                if siret
                else f'Aucun opérateur Bio trouvé avec le nom "{name}"'
            )
            return ServiceOutcome.success(RegistryLookup(found=False, message=message))

        total = safe_number(data.get("total"))
        return ServiceOutcome.success(
            RegistryLookup(
                found=True,
                operators=operators,
                total=int(total) if total is not None else len(operators),
            )
        )

    def _get(self, params: dict[str, str]) -> requests.Response:
        return requests.get(
            self._base_url,
            params=params,
            headers={"Accept": "application/json"},
            timeout=self._timeout,
        )
