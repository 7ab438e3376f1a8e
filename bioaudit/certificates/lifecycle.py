"""Certificate status derived from the expiration date.

A stored ``statut`` is only a cache: it is recomputed every time a certificate
is read for display or scoring.
"""
from __future__ import annotations

import logging
import math
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Protocol

logger = logging.getLogger(__name__)

WARNING_WINDOW_DAYS = 30
_SECONDS_PER_DAY = 86400


class CertificateLike(Protocol):
    supplier_name: str
    expires_on: date
    status: str


def _today() -> date:
    return datetime.now(timezone.utc).date()


def days_until_expiration(expiration: date | datetime, today: date | datetime | None = None) -> int:
    """Whole days from *today* to *expiration*, rounded up.

    Two datetimes are compared on the ceiling of their exact delta. Otherwise
    both sides are reduced to calendar dates, so an expiration dated yesterday
    is always -1, whatever the time of day.
    """
    reference = today if today is not None else _today()
    if isinstance(expiration, datetime) and isinstance(reference, datetime):
        return math.ceil((expiration - reference).total_seconds() / _SECONDS_PER_DAY)
    if isinstance(expiration, datetime):
        expiration = expiration.date()
    if isinstance(reference, datetime):
        reference = reference.date()
    return (expiration - reference).days


def certificate_status(
    expiration: date | datetime,
    today: date | datetime | None = None,
    *,
    warning_days: int = WARNING_WINDOW_DAYS,
) -> str:
    days = days_until_expiration(expiration, today)
    if days < 0:
        return "expire"
    if days <= warning_days:
        return "a_renouveler"
    return "valide"


def refresh_statuses(
    certificates: Iterable[CertificateLike],
    today: date | None = None,
    *,
    warning_days: int = WARNING_WINDOW_DAYS,
) -> int:
    """Rewrite cached statuses in place; return how many changed."""
    changed = 0
    for cert in certificates:
        status = certificate_status(cert.expires_on, today, warning_days=warning_days)
        if cert.status != status:
            cert.status = status
            changed += 1
    if changed:
        logger.info("certificate_statuses_refreshed", extra={"changed": changed})
    return changed


@dataclass(frozen=True)
class SupplierCertificateCheck:
    exists: bool
    expired: bool
    expiration_date: date | None
    message: str

    def to_payload(self) -> dict:
        return {
            "exists": self.exists,
            "expired": self.expired,
            "expiration_date": self.expiration_date.isoformat() if self.expiration_date else None,
            "message": self.message,
        }


def _names_match(a: str, b: str) -> bool:
    a, b = a.lower().strip(), b.lower().strip()
    return bool(a and b) and (a in b or b in a)


def check_supplier_certificate(
    supplier_name: str,
    certificates: Iterable[CertificateLike],
    today: date | None = None,
) -> SupplierCertificateCheck:
    match = next((c for c in certificates if _names_match(c.supplier_name, supplier_name)), None)
    if match is None:
        return SupplierCertificateCheck(
            exists=False,
            expired=False,
            expiration_date=None,
            message=f"Certificat manquant pour {supplier_name}",
        )

    expired = certificate_status(match.expires_on, today) == "expire"
    formatted = match.expires_on.strftime("%d/%m/%Y")
    return SupplierCertificateCheck(
        exists=True,
        expired=expired,
        expiration_date=match.expires_on,
        message=(
            f"Certificat expiré depuis le {formatted}"
            if expired
            else f"Certificat valide jusqu'au {formatted}"
        ),
    )


@dataclass(frozen=True)
class CertificateAlert:
    supplier_name: str
    kind: str  # manquant | expire | expiration_proche
    message: str
    expiration_date: date | None
    severity: str  # warning | critical


def certificate_alerts(
    certificates: Iterable[CertificateLike],
    today: date | None = None,
    *,
    required_suppliers: Iterable[str] = (),
    warning_days: int = WARNING_WINDOW_DAYS,
) -> list[CertificateAlert]:
    certificates = list(certificates)
    alerts: list[CertificateAlert] = []

    for cert in certificates:
        days = days_until_expiration(cert.expires_on, today)
        if days < 0:
            alerts.append(CertificateAlert(
                supplier_name=cert.supplier_name,
                kind="expire",
                message=f"Certificat de {cert.supplier_name} expiré depuis {-days} jour(s)",
                expiration_date=cert.expires_on,
                severity="critical",
            ))
        elif days <= warning_days:
            alerts.append(CertificateAlert(
                supplier_name=cert.supplier_name,
                kind="expiration_proche",
                message=f"Certificat de {cert.supplier_name} à renouveler dans {days} jour(s)",
                expiration_date=cert.expires_on,
                severity="warning",
            ))

    for name in required_suppliers:
        if not any(_names_match(c.supplier_name, name) for c in certificates):
            alerts.append(CertificateAlert(
                supplier_name=name,
                kind="manquant",
                message=f"Certificat manquant pour {name}",
                expiration_date=None,
                severity="critical",
            ))
    return alerts
