from __future__ import annotations

import logging
import re
import unicodedata
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RuleHint:
    rule_name: str
    status: str
    score: int | None
    decisive: bool
    message: str


# Matched on accent-stripped lowercase text.
PROHIBITED_SUBSTANCES: tuple[str, ...] = (
    "glyphosate",
    "metam-sodium",
    "metam sodium",
    "chlorpyrifos",
    "mancozebe",
    "diflufenican",
    "prosulfocarbe",
    "metolachlore",
    "tebuconazole",
    "prothioconazole",
    "cypermethrine",
    "lambda-cyhalothrine",
    "ammonitrate",
    "nitrate d'ammonium",
    "superphosphate",
    "uree",
    "solution azotee",
    "engrais de synthese",
    "ogm",
)

CERTIFYING_BODIES: tuple[str, ...] = (
    "ecocert",
    "certipaq",
    "bureau veritas",
    "qualisud",
    "certisud",
    "certis",
    "alpes controles",
    "ocacia",
    "control union",
)

_BIO_NUMBER = re.compile(r"\bFR-BIO-\d{2}\b", re.IGNORECASE)
_AB_LABEL = re.compile(r"\bAB\b")
_BIO_WORDS = re.compile(r"\b(bio|biologique|agriculture biologique|utilisable en ab)\b")
_NOT_BIO = re.compile(r"\bnon[\s-]?(bio|biologique)\b")
_TREATED_SEEDS = re.compile(r"(?<!non )\btraitees?\b")
_GENERIC_GOODS = re.compile(r"^(divers|fournitures?|articles?|produits?|marchandises?)\b")


def fold(text: str) -> str:
    """Lowercase and strip accents so 'Métam-Sodium' matches 'metam-sodium'."""
    decomposed = unicodedata.normalize("NFKD", text)
    return "".join(c for c in decomposed if not unicodedata.combining(c)).lower().strip()


def _contains_term(folded: str, term: str) -> bool:
    return re.search(rf"(?<![\w-]){re.escape(term)}(?![\w-])", folded) is not None


class ConformityRules:
    def evaluate(
        self,
        product_name: str,
        *,
        supplier_status: str | None = None,
        is_bio: bool | None = None,
    ) -> RuleHint | None:
        """Return the first matching hint, most restrictive rule first."""
        text = product_name or ""
        folded = fold(text)
        hint = (
            self._prohibited_substance(folded)
            or self._treated_seeds(folded)
            or self._certification_marker(text, folded)
            or self._bio_label(text, folded, is_bio)
            or self._supplier_context(folded, supplier_status, is_bio)
            or self._generic_goods(folded)
        )
        if hint is not None:
            logger.debug("conformity_rule_matched", extra={"rule": hint.rule_name})
        return hint

    def _prohibited_substance(self, folded: str) -> RuleHint | None:
        for term in PROHIBITED_SUBSTANCES:
            # "sans OGM" / "non ogm" are claims of absence, not ingredients.
            if _contains_term(folded, term) and not re.search(rf"\b(sans|non)\s+{re.escape(term)}\b", folded):
                return RuleHint(
                    rule_name="prohibited_substance",
                    status="non_conforme",
                    score=10,
                    decisive=True,
                    message=f"Substance interdite en agriculture biologique: {term}",
                )
        return None

    def _treated_seeds(self, folded: str) -> RuleHint | None:
        if "semence" in folded and _TREATED_SEEDS.search(folded):
            return RuleHint(
                rule_name="treated_seeds",
                status="non_conforme",
                score=20,
                decisive=True,
                message="Semences traitées non utilisables en agriculture biologique",
            )
        return None

    def _certification_marker(self, text: str, folded: str) -> RuleHint | None:
        if _NOT_BIO.search(folded):
            return None
        match = _BIO_NUMBER.search(text)
        if match:
            return RuleHint(
                rule_name="bio_registration_number",
                status="conforme",
                score=95,
                decisive=True,
                message=f"Numéro d'agrément Bio présent: {match.group(0).upper()}",
            )
        for body in CERTIFYING_BODIES:
            if _contains_term(folded, body):
                return RuleHint(
                    rule_name="certifying_body",
                    status="conforme",
                    score=95,
                    decisive=True,
                    message=f"Certification par un organisme agréé: {body}",
                )
        return None

    def _bio_label(self, text: str, folded: str, is_bio: bool | None) -> RuleHint | None:
        if _NOT_BIO.search(folded):
            return None
        if _AB_LABEL.search(text) or _BIO_WORDS.search(folded) or is_bio is True:
            return RuleHint(
                rule_name="bio_label",
                status="conforme",
                score=90,
                decisive=True,
                message="Mention Bio / logo AB sur la ligne de facture",
            )
        return None

    def _supplier_context(
        self, folded: str, supplier_status: str | None, is_bio: bool | None
    ) -> RuleHint | None:
        if supplier_status == "non_certifie" or is_bio is False or _NOT_BIO.search(folded):
            return RuleHint(
                rule_name="non_certified_source",
                status="attention",
                score=None,
                decisive=False,
                message="Produit sans mention Bio ou fournisseur non certifié",
            )
        if supplier_status in ("certifie", "en_conversion"):
            return RuleHint(
                rule_name="certified_supplier",
                status="conforme" if supplier_status == "certifie" else "attention",
                score=None,
                decisive=False,
                message=f"Fournisseur {supplier_status.replace('_', ' ')} dans l'annuaire Bio",
            )
        return None

    def _generic_goods(self, folded: str) -> RuleHint | None:
        if not folded or _GENERIC_GOODS.match(folded):
            return RuleHint(
                rule_name="generic_goods",
                status="attention",
                score=None,
                decisive=False,
                message="Désignation trop générique pour conclure",
            )
        return None
