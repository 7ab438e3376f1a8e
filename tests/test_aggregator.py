"""Invoice-level conformity aggregation."""
from __future__ import annotations

from bioaudit.conformity.aggregator import aggregate
from bioaudit.core.numbers import round_half_up
from bioaudit.extraction.models import LineItem


def _line(i: int, status=None, score=None) -> LineItem:
    return LineItem(id=f"l{i}", description="x", conformity_status=status, conformity_score=score)


def test_empty_invoice_scores_100() -> None:
    result = aggregate([])
    assert result.score == 100
    assert result.breakdown == {"conforme": 0, "attention": 0, "non_conforme": 0}


def test_mean_and_breakdown() -> None:
    result = aggregate([_line(1, "conforme", 95), _line(2, "attention", 65)])
    assert result.score == 80
    assert result.breakdown == {"conforme": 1, "attention": 1, "non_conforme": 0}
    assert result.status == "conforme"


def test_missing_score_uses_status_default() -> None:
    result = aggregate([_line(1, "non_conforme"), _line(2, "conforme")])
    assert result.score == 55  # (20 + 90) / 2


def test_lines_without_status_are_ignored() -> None:
    result = aggregate([_line(1), _line(2, "attention", 60), _line(3, None, 10)])
    assert result.score == 60
    assert sum(result.breakdown.values()) == 1


def test_unclassified_invoice_scores_100() -> None:
    assert aggregate([_line(1), _line(2)]).score == 100


def test_half_rounds_up() -> None:
    # (90 + 61) / 2 = 75.5
    assert aggregate([_line(1, "conforme", 90), _line(2, "attention", 61)]).score == 76


def test_round_half_up() -> None:
    assert round_half_up(2.5) == 3
    assert round_half_up(0.5) == 1
    assert round_half_up(2.4999) == 2
    assert round_half_up(-2.5) == -3


def test_payload_shape() -> None:
    payload = aggregate([_line(1, "non_conforme", 10)]).to_payload()
    assert payload == {
        "score": 10,
        "breakdown": {"conforme": 0, "attention": 0, "non_conforme": 1},
        "status": "non_conforme",
    }
