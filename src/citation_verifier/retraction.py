"""Retraction signal detection from source payloads.

Crossref exposes editorial notices (including Retraction Watch data) through
``updated-by`` / ``update-to`` entries and the ``relation`` object; OpenAlex
flags retracted works with ``is_retracted``. Detection is a pure function of
the payload and never touches the network.
"""

from __future__ import annotations

from typing import Any

from citation_verifier.models import RetractionNature, RetractionSignal, WorkRecord
from citation_verifier.utils import doi_url, normalize_doi

__all__ = [
    "UPDATE_TYPE_NATURES",
    "RELATION_NATURES",
    "detect_retraction",
    "detect_for_work",
]

# Crossref update types, lowercased with '_' folded to '-'
UPDATE_TYPE_NATURES: dict[str, RetractionNature] = {
    "retraction": RetractionNature.RETRACTION,
    "withdrawal": RetractionNature.RETRACTION,
    "removal": RetractionNature.RETRACTION,
    "partial-retraction": RetractionNature.RETRACTION,
    "expression-of-concern": RetractionNature.EXPRESSION_OF_CONCERN,
    "correction": RetractionNature.CORRECTION,
    "erratum": RetractionNature.CORRECTION,
    "corrigendum": RetractionNature.CORRECTION,
}

RELATION_NATURES: dict[str, RetractionNature] = {
    "is-retracted-by": RetractionNature.RETRACTION,
    "has-retraction": RetractionNature.RETRACTION,
    "has-expression-of-concern": RetractionNature.EXPRESSION_OF_CONCERN,
    "is-corrected-by": RetractionNature.CORRECTION,
    "has-correction": RetractionNature.CORRECTION,
}


def _update_type(update: dict[str, Any]) -> str:
    return str(update.get("type") or "").strip().lower().replace("_", "-").replace(" ", "-")


def _signal_from_update(update: dict[str, Any]) -> RetractionSignal | None:
    nature = UPDATE_TYPE_NATURES.get(_update_type(update))
    if nature is None:
        return None
    notice_doi = normalize_doi(update.get("DOI"))
    updated = update.get("updated") or {}
    reasons = update.get("reasons") or update.get("reason") or []
    if isinstance(reasons, str):
        reasons = [reasons]
    return RetractionSignal(
        nature=nature,
        date=updated.get("date-time"),
        reasons=tuple(str(r) for r in reasons),
        notice_url=doi_url(notice_doi) if notice_doi else None,
        source=update.get("source") or "publisher",
    )


def _signal_from_relation(relation: dict[str, Any]) -> RetractionSignal | None:
    for key, nature in RELATION_NATURES.items():
        targets = relation.get(key) or []
        if isinstance(targets, dict):
            targets = [targets]
        for target in targets:
            notice_doi = None
            if isinstance(target, dict) and target.get("id-type", "doi") == "doi":
                notice_doi = normalize_doi(target.get("id"))
            return RetractionSignal(
                nature=nature,
                notice_url=doi_url(notice_doi) if notice_doi else None,
                source="publisher",
            )
    return None


def detect_retraction(payload: dict[str, Any] | None) -> RetractionSignal | None:
    """Return the first retraction, concern or correction marker in a source payload.

    Checked in order: Crossref ``updated-by``, Crossref ``update-to``, Crossref
    ``relation``, OpenAlex ``is_retracted``.
    """
    if not payload:
        return None

    for key in ("updated-by", "update-to"):
        for update in payload.get(key) or []:
            if not isinstance(update, dict):
                continue
            signal = _signal_from_update(update)
            if signal is not None:
                return signal

    relation = payload.get("relation")
    if isinstance(relation, dict):
        signal = _signal_from_relation(relation)
        if signal is not None:
            return signal

    if payload.get("is_retracted") is True:
        return RetractionSignal(nature=RetractionNature.RETRACTION, source="openalex")

    return None


def detect_for_work(work: WorkRecord | None) -> RetractionSignal | None:
    """Inspect the raw payload a WorkRecord was built from."""
    if work is None:
        return None
    return detect_retraction(work.raw)
