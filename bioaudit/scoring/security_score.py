"""Organization security score.

Combines four weighted components into one 0-100 value:
    Operator verified on the registry   20
    Input conformity                    30
    Supplier certification              25
    Certificate validity                25

A component whose denominator is zero (no inputs, no suppliers, no
certificates) gets full credit. Organizations with no data therefore score as
fully compliant; this is the established scoring policy, not an error case.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone

from bioaudit.core.numbers import round_half_up

OPERATOR_WEIGHT = 20
INPUTS_WEIGHT = 30
SUPPLIERS_WEIGHT = 25
CERTIFICATES_WEIGHT = 25

BIO_INPUT_RATE_THRESHOLD = 0.95


@dataclass(frozen=True)
class ScoreSnapshot:
    inputs_total: int = 0
    inputs_conforme: int = 0
    inputs_attention: int = 0
    inputs_non_conforme: int = 0
    suppliers_total: int = 0
    suppliers_certified: int = 0
    certificates_total: int = 0
    certificates_expired: int = 0
    organization_verified: bool = False
    # Alerts only, never part of the score.
    certificates_expiring: int = 0


@dataclass(frozen=True)
class ScoreComponent:
    key: str
    label: str
    score: int
    max_score: int


@dataclass(frozen=True)
class ScoreAlert:
    kind: str
    message: str
    severity: str  # warning | critical


@dataclass(frozen=True)
class SecurityScore:
    score: int
    components: list[ScoreComponent]
    alerts: list[ScoreAlert] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)
    computed_at: datetime | None = None

    def component(self, key: str) -> ScoreComponent:
        return next(c for c in self.components if c.key == key)


def _ratio_component(weight: int, numerator: int, denominator: int) -> int:
    if denominator <= 0:
        return weight
    ratio = max(0.0, min(1.0, numerator / denominator))
    return round_half_up(weight * ratio)


def _components(snapshot: ScoreSnapshot) -> list[ScoreComponent]:
    return [
        ScoreComponent(
            key="operator_verified",
            label="Exploitation vérifiée Agence Bio",
            score=OPERATOR_WEIGHT if snapshot.organization_verified else 0,
            max_score=OPERATOR_WEIGHT,
        ),
        ScoreComponent(
            key="input_conformity",
            label="Conformité des intrants",
            score=_ratio_component(INPUTS_WEIGHT, snapshot.inputs_conforme, snapshot.inputs_total),
            max_score=INPUTS_WEIGHT,
        ),
        ScoreComponent(
            key="supplier_certification",
            label="Fournisseurs certifiés",
            score=_ratio_component(
                SUPPLIERS_WEIGHT, snapshot.suppliers_certified, snapshot.suppliers_total
            ),
            max_score=SUPPLIERS_WEIGHT,
        ),
        ScoreComponent(
            key="certificate_validity",
            label="Certificats valides",
            score=_ratio_component(
                CERTIFICATES_WEIGHT,
                snapshot.certificates_total - snapshot.certificates_expired,
                snapshot.certificates_total,
            ),
            max_score=CERTIFICATES_WEIGHT,
        ),
    ]


def build_recommendations(snapshot: ScoreSnapshot) -> list[str]:
    recommendations: list[str] = []
    if not snapshot.organization_verified:
        recommendations.append(
            "Vérifiez votre exploitation sur l'annuaire Agence Bio pour certifier votre statut"
        )
    if snapshot.inputs_non_conforme > 0:
        recommendations.append(
            f"{snapshot.inputs_non_conforme} intrant(s) non conforme(s) à régulariser ou justifier"
        )
    if snapshot.suppliers_total > 0 and snapshot.suppliers_certified < snapshot.suppliers_total:
        recommendations.append(
            "Vérifiez la certification Bio de tous vos fournisseurs auprès de l'Agence Bio"
        )
    if snapshot.certificates_expired > 0:
        recommendations.append(
            f"{snapshot.certificates_expired} certificat(s) fournisseur expiré(s) à renouveler"
        )
    return recommendations


def build_alerts(snapshot: ScoreSnapshot) -> list[ScoreAlert]:
    alerts: list[ScoreAlert] = []
    if snapshot.certificates_expired > 0:
        alerts.append(ScoreAlert(
            kind="certificats_expires",
            message=f"{snapshot.certificates_expired} certificat(s) expiré(s) - action requise",
            severity="critical",
        ))
    if snapshot.certificates_expiring > 0:
        alerts.append(ScoreAlert(
            kind="certificats_a_renouveler",
            message=f"{snapshot.certificates_expiring} certificat(s) à renouveler dans les 30 jours",
            severity="warning",
        ))
    if snapshot.inputs_non_conforme > 0:
        alerts.append(ScoreAlert(
            kind="intrants_non_conformes",
            message=f"{snapshot.inputs_non_conforme} intrant(s) non conforme(s)",
            severity="critical",
        ))
    if snapshot.inputs_attention > 0:
        alerts.append(ScoreAlert(
            kind="intrants_a_verifier",
            message=f"{snapshot.inputs_attention} intrant(s) à vérifier",
            severity="warning",
        ))
    if snapshot.inputs_total > 0:
        rate = snapshot.inputs_conforme / snapshot.inputs_total
        if rate < BIO_INPUT_RATE_THRESHOLD:
            alerts.append(ScoreAlert(
                kind="taux_conformite",
                message=f"Taux de conformité bio inférieur à 95% ({rate * 100:.1f}%)",
                severity="warning",
            ))
    return alerts


def compute_security_score(
    snapshot: ScoreSnapshot, *, now: datetime | None = None
) -> SecurityScore:
    """Score, alerts and recommendations for one organization snapshot.

    Pure apart from ``computed_at``.
    """
    components = _components(snapshot)
    return SecurityScore(
        score=sum(c.score for c in components),
        components=components,
        alerts=build_alerts(snapshot),
        recommendations=build_recommendations(snapshot),
        computed_at=now or datetime.now(timezone.utc),
    )
