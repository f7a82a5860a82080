"""Citation Verifier - Decide whether scholarly citations refer to real works.

This package provides:
- DOI lookups against Crossref with fallback to OpenAlex
- PubMed id resolution through Europe PMC
- Title/author/year search with best-match scoring
- Retraction, expression-of-concern and correction detection
- Batch verification with windowed concurrency and a result cache

Example usage:
    from citation_verifier import CitationInput, CitationVerifier, CrossrefSource, OpenAlexSource

    verifier = CitationVerifier(CrossrefSource(), OpenAlexSource())
    result = await verifier.verify(CitationInput(doi="10.1038/nature14539"))
    print(result.status.value)
"""

from citation_verifier._version import __version__
from citation_verifier.batch import BatchCoordinator, ResultCache, cache_key
from citation_verifier.config import BatchConfig, SourceConfig, VerifierConfig
from citation_verifier.matching import (
    compare_metadata,
    find_best_match,
    score_candidate,
    score_confidence,
)
from citation_verifier.models import (
    Author,
    CitationContext,
    CitationInput,
    CitationStatus,
    Discrepancy,
    LookupOutcome,
    LookupStatus,
    RetractionNature,
    RetractionSignal,
    Severity,
    SourceRole,
    TaggedCitation,
    VerificationResult,
    WorkRecord,
)
from citation_verifier.retraction import detect_retraction
from citation_verifier.sources import CrossrefSource, EuropePMCResolver, OpenAlexSource, SourceClient
from citation_verifier.utils import (
    AsyncHttpClient,
    extract_doi_from_text,
    extract_pmid_from_text,
    normalize_doi,
    normalize_pmid,
)
from citation_verifier.verifier import (
    CitationVerifier,
    CitationVerifierError,
    InputError,
    classify_fuzzy_match,
    generate_summary,
    status_for_found,
)

__all__ = [
    # Version
    "__version__",
    # Orchestration
    "CitationVerifier",
    "BatchCoordinator",
    "ResultCache",
    "cache_key",
    # Sources
    "SourceClient",
    "CrossrefSource",
    "OpenAlexSource",
    "EuropePMCResolver",
    "AsyncHttpClient",
    # Configuration
    "SourceConfig",
    "VerifierConfig",
    "BatchConfig",
    # Data model
    "Author",
    "CitationContext",
    "CitationInput",
    "CitationStatus",
    "Discrepancy",
    "LookupOutcome",
    "LookupStatus",
    "RetractionNature",
    "RetractionSignal",
    "Severity",
    "SourceRole",
    "TaggedCitation",
    "VerificationResult",
    "WorkRecord",
    # Matching and classification
    "compare_metadata",
    "score_confidence",
    "score_candidate",
    "find_best_match",
    "classify_fuzzy_match",
    "status_for_found",
    "detect_retraction",
    "generate_summary",
    # Identifiers
    "normalize_doi",
    "normalize_pmid",
    "extract_doi_from_text",
    "extract_pmid_from_text",
    # Errors
    "CitationVerifierError",
    "InputError",
]
