"""Per-line conformity classification.

Rule hints settle the clear cases (certified markers, prohibited substances).
Everything else goes to the AI model with the regulatory prompt. When the model
cannot answer, the line gets the neutral "needs review" verdict: a line is
never marked conforme or non_conforme without evidence.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field, replace

from bioaudit.ai.base import VisionModel
from bioaudit.conformity.bands import DEFAULT_STATUS_SCORES, NEUTRAL_SCORE, status_for_score
from bioaudit.conformity.rules import ConformityRules, RuleHint
from bioaudit.core.errors import ExternalServiceUnavailable, MalformedInput, ServiceOutcome
from bioaudit.extraction.models import ConformityAnalysis, LineItem
from bioaudit.extraction.normalizer import (
    normalize_analysis,
    normalize_score,
    normalize_status,
    parse_model_json,
)

logger = logging.getLogger(__name__)

MANUAL_REVIEW_REASON = "Vérification automatique non disponible, contrôle manuel requis"

CONFORMITY_CHECK_PROMPT = """\
Tu es un expert en réglementation Bio (INAO, règlement (UE) 2018/848).
Analyse ce produit agricole et détermine sa conformité pour une exploitation Bio.

Produit: {product}
Fournisseur: {supplier}
Marqué Bio: {is_bio}
Indice préalable: {hint}

Retourne UNIQUEMENT un objet JSON (sans markdown):
{{
  "status": "conforme/attention/non_conforme",
  "score": 0,
  "reason": "explication courte",
  "details": ["point 1", "point 2"],
  "recommendations": ["action 1"],
  "reglement_reference": "article du règlement si applicable"
}}

Barème du score:
- 90-100: certifié Bio, aucun doute
- 70-89: probablement conforme, vérification recommandée
- 50-69: dérogation nécessaire ou doute significatif
- 30-49: forte probabilité de non-conformité
- 0-29: clairement interdit
"""


@dataclass(frozen=True)
class ConformityCheck:
    status: str
    score: int
    analysis: ConformityAnalysis = field(default_factory=ConformityAnalysis)
    source: str = "model"  # rules | model | fallback


def neutral_check(reason: str = MANUAL_REVIEW_REASON) -> ConformityCheck:
    return ConformityCheck(
        status="attention",
        score=NEUTRAL_SCORE,
        analysis=ConformityAnalysis(
            reason=reason,
            recommendations=["Vérifier manuellement la conformité du produit"],
        ),
        source="fallback",
    )


def _format_is_bio(is_bio: bool | None) -> str:
    if is_bio is True:
        return "Oui"
    if is_bio is False:
        return "Non"
    return "Non spécifié"


class ConformityClassifier:
    def __init__(
        self,
        model: VisionModel | None,
        *,
        rules: ConformityRules | None = None,
        timeout: float = 45.0,
    ) -> None:
        self._model = model
        self._rules = rules or ConformityRules()
        self._timeout = timeout

    async def check(
        self,
        product_name: str,
        supplier: str | None = None,
        is_bio: bool | None = None,
        *,
        supplier_status: str | None = None,
    ) -> ConformityCheck:
        hint = self._rules.evaluate(product_name, supplier_status=supplier_status, is_bio=is_bio)
        if hint is not None and hint.decisive:
            return ConformityCheck(
                status=hint.status,
                score=hint.score if hint.score is not None else DEFAULT_STATUS_SCORES[hint.status],
                analysis=ConformityAnalysis(reason=hint.message),
                source="rules",
            )

        outcome = await self._ask_model(product_name, supplier, is_bio, hint)
        if not outcome.ok:
            logger.warning(
                "conformity_fallback",
                extra={"product": product_name[:80], "error": str(outcome.error)},
            )
            return neutral_check()
        return outcome.value

    async def classify_line(
        self,
        line: LineItem,
        supplier: str | None = None,
        *,
        supplier_status: str | None = None,
    ) -> LineItem:
        # An upstream status is authoritative; only a missing score is filled in.
        if line.conformity_status is not None:
            if line.conformity_score is None:
                return replace(line, conformity_score=DEFAULT_STATUS_SCORES[line.conformity_status])
            return line

        result = await self.check(
            line.description, supplier, line.is_bio, supplier_status=supplier_status
        )
        return replace(
            line,
            conformity_status=result.status,
            conformity_score=result.score,
            conformity_analysis=result.analysis,
        )

    async def classify_lines(
        self,
        lines: list[LineItem],
        supplier: str | None = None,
        *,
        supplier_status: str | None = None,
    ) -> list[LineItem]:
        """Classify every line independently; one failing line never aborts the batch."""
        results = await asyncio.gather(
            *(self.classify_line(line, supplier, supplier_status=supplier_status) for line in lines),
            return_exceptions=True,
        )

        classified: list[LineItem] = []
        for line, result in zip(lines, results):
            if isinstance(result, BaseException):
                logger.error(
                    "line_classification_failed",
                    extra={"line_id": line.id, "error": repr(result)},
                )
                fallback = neutral_check()
                result = replace(
                    line,
                    conformity_status=fallback.status,
                    conformity_score=fallback.score,
                    conformity_analysis=fallback.analysis,
                )
            classified.append(result)
        return classified

    # ------------------------------------------------------------------ #
    #  Model path                                                         #
    # ------------------------------------------------------------------ #

    async def _ask_model(
        self,
        product_name: str,
        supplier: str | None,
        is_bio: bool | None,
        hint: RuleHint | None,
    ) -> ServiceOutcome[ConformityCheck]:
        if self._model is None:
            return ServiceOutcome.failure(ExternalServiceUnavailable("ai", "no model configured"))

        prompt = CONFORMITY_CHECK_PROMPT.format(
            product=product_name or "Non spécifié",
            supplier=supplier or "Non spécifié",
            is_bio=_format_is_bio(is_bio),
            hint=f"{hint.status} ({hint.message})" if hint else "aucun",
        )
        try:
            reply = await asyncio.wait_for(self._model.generate(prompt), timeout=self._timeout)
        except ExternalServiceUnavailable as exc:
            return ServiceOutcome.failure(exc)
        except asyncio.TimeoutError:
            return ServiceOutcome.failure(
                ExternalServiceUnavailable(self._model.name, f"no reply within {self._timeout:.0f}s")
            )
        except Exception as exc:
            return ServiceOutcome.failure(ExternalServiceUnavailable(self._model.name, str(exc)))

        try:
            data = parse_model_json(reply)
        except MalformedInput as exc:
            return ServiceOutcome.failure(
                ExternalServiceUnavailable(self._model.name, f"unreadable verdict: {exc}")
            )

        verdict = self._read_verdict(data)
        if verdict is None:
            return ServiceOutcome.failure(
                ExternalServiceUnavailable(self._model.name, "verdict without status or score")
            )
        return ServiceOutcome.success(verdict)

    @staticmethod
    def _read_verdict(data: dict) -> ConformityCheck | None:
        status = normalize_status(data.get("status"))
        score = normalize_score(data.get("score"))
        if status is None and score is None:
            return None
        if status is None:
            status = status_for_score(score)
        if score is None:
            score = DEFAULT_STATUS_SCORES[status]

        analysis = normalize_analysis(data, data.get("reason")) or ConformityAnalysis()
        return ConformityCheck(status=status, score=score, analysis=analysis, source="model")
