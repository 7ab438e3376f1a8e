"""Invoice-level conformity score from classified lines."""
from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field

from bioaudit.conformity.bands import DEFAULT_STATUS_SCORES, status_for_score
from bioaudit.core.numbers import round_half_up
from bioaudit.extraction.models import LineItem


def _empty_breakdown() -> dict[str, int]:
    return {"conforme": 0, "attention": 0, "non_conforme": 0}


@dataclass(frozen=True)
class ConformityAggregate:
    score: int
    breakdown: dict[str, int] = field(default_factory=_empty_breakdown)
    status: str = "conforme"

    def to_payload(self) -> dict:
        return {"score": self.score, "breakdown": dict(self.breakdown), "status": self.status}


def aggregate(lines: Sequence[LineItem]) -> ConformityAggregate:
    """Mean line score (half-up) and per-status counts.

    Lines without a status count for nothing. An invoice with no classified
    line scores 100: existing documents were scored that way and the value is
    kept for compatibility, although the classifier's neutral fallback is 50.
    """
    breakdown = _empty_breakdown()
    scores: list[int] = []

    for line in lines:
        status = line.conformity_status
        if status is None:
            continue
        breakdown[status] += 1
        score = line.conformity_score
        scores.append(score if score is not None else DEFAULT_STATUS_SCORES[status])

    if not scores:
        return ConformityAggregate(score=100, breakdown=breakdown, status="conforme")

    score = round_half_up(sum(scores) / len(scores))
    return ConformityAggregate(score=score, breakdown=breakdown, status=status_for_score(score))
