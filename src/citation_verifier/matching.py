"""Metadata comparison, confidence scoring and search-candidate ranking.

The confidence model here is a simple additive penalty heuristic: it starts at
1.0 and subtracts a fixed amount per discrepancy. It is not a calibrated
probability and should not be presented as one.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from rapidfuzz.fuzz import token_sort_ratio

from citation_verifier.config import VerifierConfig
from citation_verifier.models import CitationInput, Discrepancy, Severity, WorkRecord
from citation_verifier.utils import normalize_for_match, token_overlap_similarity

__all__ = [
    "SEVERITY_PENALTIES",
    "title_similarity",
    "author_similarity",
    "journal_similarity",
    "compare_metadata",
    "score_confidence",
    "score_candidate",
    "find_best_match",
]

SEVERITY_PENALTIES: dict[Severity, float] = {
    Severity.CRITICAL: 0.5,
    Severity.MAJOR: 0.2,
    Severity.MINOR: 0.05,
}

_DEFAULT_CONFIG = VerifierConfig()


# ------------- Field Similarity -------------


def title_similarity(provided: str | None, actual: str | None) -> float:
    """Token-overlap similarity of two titles."""
    return token_overlap_similarity(provided, actual)


def author_similarity(provided: str | None, actual: str | None) -> float:
    """Token-overlap similarity of two author names."""
    return token_overlap_similarity(provided, actual)


def journal_similarity(provided: str | None, actual: str | None) -> float:
    """Order-insensitive fuzzy ratio of two normalized journal names (0.0-1.0)."""
    norm_a = normalize_for_match(provided)
    norm_b = normalize_for_match(actual)
    if not norm_a or not norm_b:
        return 0.0
    return token_sort_ratio(norm_a, norm_b) / 100.0


# ------------- Metadata Comparator -------------


def compare_metadata(
    provided: CitationInput,
    actual: WorkRecord,
    config: VerifierConfig | None = None,
) -> list[Discrepancy]:
    """Compare citation metadata against a retrieved record.

    Only fields present on both sides are compared; a missing field is never
    evidence of anything.
    """
    cfg = config or _DEFAULT_CONFIG
    discrepancies: list[Discrepancy] = []

    if provided.title and actual.title:
        sim = title_similarity(provided.title, actual.title)
        if sim < cfg.title_threshold:
            severity = Severity.CRITICAL if sim < cfg.title_critical_threshold else Severity.MAJOR
            discrepancies.append(Discrepancy("title", provided.title, actual.title, severity))

    if provided.year and actual.year and provided.year != actual.year:
        gap = abs(provided.year - actual.year)
        severity = Severity.MAJOR if gap > cfg.year_major_gap else Severity.MINOR
        discrepancies.append(Discrepancy("year", str(provided.year), str(actual.year), severity))

    provided_author = provided.first_author
    actual_author = actual.first_author
    if provided_author and actual_author:
        if author_similarity(provided_author, actual_author) < cfg.author_threshold:
            discrepancies.append(Discrepancy("authors", provided_author, actual_author, Severity.MAJOR))

    if provided.journal and actual.journal:
        if journal_similarity(provided.journal, actual.journal) < cfg.journal_threshold:
            discrepancies.append(Discrepancy("journal", provided.journal, actual.journal, Severity.MINOR))

    return discrepancies


# ------------- Confidence Scorer -------------


def score_confidence(discrepancies: Iterable[Discrepancy]) -> float:
    """Reduce discrepancies to a heuristic confidence in [0, 1]."""
    confidence = 1.0
    for d in discrepancies:
        confidence -= SEVERITY_PENALTIES[d.severity]
    return max(0.0, min(1.0, confidence))


# ------------- Best-Match Search Scoring -------------


def score_candidate(citation: CitationInput, work: WorkRecord) -> float:
    """Weighted match score: 0.5 title + 0.3 first author + 0.2 same year."""
    score = 0.0
    if citation.title and work.title:
        score += 0.5 * title_similarity(citation.title, work.title)
    provided_author = citation.first_author
    if provided_author and work.first_author:
        score += 0.3 * author_similarity(provided_author, work.first_author)
    if citation.year and work.year and citation.year == work.year:
        score += 0.2
    return score


def find_best_match(
    citation: CitationInput, candidates: Sequence[WorkRecord]
) -> tuple[WorkRecord, float] | None:
    """Highest-scoring candidate; ties keep the first one seen."""
    best: tuple[WorkRecord, float] | None = None
    for work in candidates:
        score = score_candidate(citation, work)
        if best is None or score > best[1]:
            best = (work, score)
    return best
