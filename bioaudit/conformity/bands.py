"""Conformity score bands (0-100) and their relation to the tri-state status."""
from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class ScoreBand:
    low: int
    high: int
    key: str
    label: str


SCORE_BANDS: tuple[ScoreBand, ...] = (
    ScoreBand(90, 100, "certifie", "Produit certifié Bio, aucun doute"),
    ScoreBand(70, 89, "probable", "Probablement conforme, vérification recommandée"),
    ScoreBand(50, 69, "derogation", "Dérogation nécessaire ou doute significatif"),
    ScoreBand(30, 49, "risque", "Forte probabilité de non-conformité"),
    ScoreBand(0, 29, "interdit", "Produit clairement interdit"),
)

# Used when a line carries a status but no score.
DEFAULT_STATUS_SCORES: dict[str, int] = {
    "conforme": 90,
    "attention": 60,
    "non_conforme": 20,
}

NEUTRAL_SCORE = 50


def band_for_score(score: int) -> ScoreBand:
    clamped = max(0, min(100, int(score)))
    for band in SCORE_BANDS:
        if band.low <= clamped <= band.high:
            return band
    raise AssertionError(f"score {score!r} outside every band")


def status_for_score(score: int) -> str:
    """Status implied by a score alone; an explicit status always takes precedence."""
    if score >= 80:
        return "conforme"
    if score >= 40:
        return "attention"
    return "non_conforme"
