"""Configuration dataclasses for the citation verifier."""

from __future__ import annotations

import os
from dataclasses import dataclass

from citation_verifier._version import __version__
from citation_verifier.utils import CROSSREF_API, EUROPEPMC_API, OPENALEX_API

DEFAULT_CONTACT_EMAIL = "citation-verifier@example.com"
DEFAULT_TIMEOUT = 20.0
CLIENT_NAME = "CitationVerifier"


def _env_timeout() -> float:
    raw = os.environ.get("CITATION_VERIFIER_TIMEOUT")
    if not raw:
        return DEFAULT_TIMEOUT
    try:
        return float(raw)
    except ValueError:
        return DEFAULT_TIMEOUT


def _env_email(*names: str) -> str:
    for name in names:
        value = os.environ.get(name)
        if value:
            return value
    return DEFAULT_CONTACT_EMAIL


@dataclass
class SourceConfig:
    """Connection settings for one external bibliographic source.

    Attributes:
        base_url: API root, without a trailing slash
        contact_email: Address announced to the source's "polite pool"
        timeout: Per-request timeout in seconds; a timeout is an indeterminate outcome
        max_retries: Extra attempts for 429/5xx responses and transport errors
    """

    base_url: str
    contact_email: str = DEFAULT_CONTACT_EMAIL
    timeout: float = DEFAULT_TIMEOUT
    max_retries: int = 2

    def user_agent_header(self) -> str:
        """User-Agent identifying the client and a contact address."""
        return f"{CLIENT_NAME}/{__version__} (mailto:{self.contact_email})"

    @classmethod
    def crossref_from_env(cls) -> SourceConfig:
        return cls(
            base_url=CROSSREF_API,
            contact_email=_env_email("CROSSREF_EMAIL", "CITATION_VERIFIER_EMAIL"),
            timeout=_env_timeout(),
        )

    @classmethod
    def openalex_from_env(cls) -> SourceConfig:
        return cls(
            base_url=OPENALEX_API,
            contact_email=_env_email("OPENALEX_EMAIL", "CITATION_VERIFIER_EMAIL"),
            timeout=_env_timeout(),
        )

    @classmethod
    def europepmc_from_env(cls) -> SourceConfig:
        return cls(
            base_url=EUROPEPMC_API,
            contact_email=_env_email("CITATION_VERIFIER_EMAIL"),
            timeout=_env_timeout(),
        )


@dataclass
class VerifierConfig:
    """Thresholds for metadata comparison and fuzzy-match classification."""

    title_threshold: float = 0.90  # below: title discrepancy
    title_critical_threshold: float = 0.50  # below: critical instead of major
    author_threshold: float = 0.70
    journal_threshold: float = 0.70
    year_major_gap: int = 2  # year differences beyond this are major
    match_threshold: float = 0.70  # best search candidate must score above this
    fuzzy_verified_confidence: float = 0.80
    fuzzy_fallback_confidence: float = 0.70
    search_rows: int = 10


@dataclass
class BatchConfig:
    """Settings for batch verification."""

    concurrency: int = 8
    cache_ttl_seconds: float = 24 * 60 * 60
    cache_max_entries: int = 1024
    use_cache: bool = True
