"""Mapping of organic-operator registry items to local records.

Registry items look like::

    {"id": 1234, "numeroBio": "...", "siret": "...", "raisonSociale": "...",
     "denominationcourante": "...",
     "adressesOperateurs": [{"lieu", "codePostal", "ville", "pays"}],
     "activites": [{"nom", "etatCertificationBio"}],
     "certificats": [{"organisme", "dateEngagement", "dateSuspension",
                      "dateArret", "url"}]}
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any

from bioaudit.extraction.safe_cast import safe_array, safe_mapping, safe_number, safe_string

ENGAGED = "ENGAGEE"


@dataclass(frozen=True)
class RegistryOperator:
    id: str
    name: str | None
    siret: str | None
    siren: str | None
    bio_number: str | None
    statut: str  # certifie | en_conversion | non_certifie
    certifying_body: str | None
    certification_date: str | None
    address: str | None
    postal_code: str | None
    city: str | None
    activities: list[str] = field(default_factory=list)
    page_url: str | None = None
    certificate_url: str | None = None

    def to_payload(self) -> dict[str, Any]:
        return asdict(self)


def engaged_activities(activities: Any) -> list[dict]:
    return [
        a for a in (safe_mapping(x) for x in safe_array(activities))
        if a is not None and safe_string(a.get("etatCertificationBio")) == ENGAGED
    ]


def derive_statut_bio(activities: Any) -> str:
    engaged = engaged_activities(activities)
    if not engaged:
        return "non_certifie"
    if any("conversion" in (safe_string(a.get("nom")) or "").lower() for a in engaged):
        return "en_conversion"
    return "certifie"


def select_active_certificate(certificates: Any) -> dict | None:
    """First certificate with neither a suspension nor a termination date."""
    for raw in safe_array(certificates):
        cert = safe_mapping(raw)
        if cert is None:
            continue
        if not cert.get("dateSuspension") and not cert.get("dateArret"):
            return cert
    return None


def _operator_id(value: Any) -> str | None:
    number = safe_number(value)
    if number is not None:
        return str(int(number)) if float(number).is_integer() else str(number)
    return safe_string(value)


def map_operator(item: dict, fiche_url: str) -> RegistryOperator:
    operator_id = _operator_id(item.get("id")) or ""
    siret = safe_string(item.get("siret"))
    certificate = select_active_certificate(item.get("certificats")) or {}
    addresses = safe_array(item.get("adressesOperateurs"))
    address = safe_mapping(addresses[0]) if addresses else None
    address = address or {}

    return RegistryOperator(
        id=operator_id,
        name=safe_string(item.get("denominationcourante")) or safe_string(item.get("raisonSociale")),
        siret=siret,
        siren=siret[:9] if siret else None,
        bio_number=safe_string(item.get("numeroBio")),
        statut=derive_statut_bio(item.get("activites")),
        certifying_body=safe_string(certificate.get("organisme")),
        certification_date=safe_string(certificate.get("dateEngagement")),
        address=safe_string(address.get("lieu")),
        postal_code=safe_string(address.get("codePostal")),
        city=safe_string(address.get("ville")),
        activities=[
            name for name in (safe_string(a.get("nom")) for a in engaged_activities(item.get("activites")))
            if name
        ],
        page_url=f"{fiche_url.rstrip('/')}/{operator_id}" if operator_id else None,
        certificate_url=safe_string(certificate.get("url")),
    )
