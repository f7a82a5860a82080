"""Shared bibliographic utilities for citation verification.

Includes text normalization, identifier (DOI/PMID) handling, token-overlap
similarity, API response converters and the async HTTP client used by the
source clients.
"""

from __future__ import annotations

import asyncio
import logging
import re
import unicodedata
from collections.abc import Iterable
from typing import Any

import httpx

from citation_verifier.models import Author, WorkRecord

# ------------- Constants & Regex -------------

CROSSREF_API = "https://api.crossref.org"
OPENALEX_API = "https://api.openalex.org"
EUROPEPMC_API = "https://www.ebi.ac.uk/europepmc/webservices/rest"

DOI_PREFIX_RE = re.compile(r"^(?:https?://(?:dx\.)?doi\.org/)+", re.IGNORECASE)
DOI_IN_TEXT_RE = re.compile(r"\b(10\.\d{4,9}/[^\s\"'<>]+)", re.IGNORECASE)
PMID_IN_TEXT_RE = re.compile(r"\bPMID:?\s*(\d+)\b", re.IGNORECASE)
PMID_URL_RE = re.compile(r"pubmed\.ncbi\.nlm\.nih\.gov/(\d+)", re.IGNORECASE)

# Trailing characters that free-text extraction drags along with a DOI
DOI_TRAILING_PUNCT = ".,;:)]}>"

# Values some publishers emit in place of a missing DOI
ABSENT_DOI_VALUES = {"", "0", "unavailable"}

logger = logging.getLogger(__name__)


# ------------- Text Normalization -------------


def strip_diacritics(text: str) -> str:
    """Remove diacritics from text (e.g., 'café' -> 'cafe')."""
    nfkd = unicodedata.normalize("NFKD", text)
    return "".join([c for c in nfkd if not unicodedata.combining(c)])


_LATEX_CMD_RE = re.compile(r"\\[a-zA-Z]+(\s*\[[^\]]*\])?")
_LATEX_MATH_RE = re.compile(r"\$[^$]*\$")
_BRACES_RE = re.compile(r"[{}]")
_HTML_TAG_RE = re.compile(r"<[^>]*>")
_NON_WORD_RE = re.compile(r"[^\w\s]|_")


def latex_to_plain(text: str) -> str:
    """Remove LaTeX commands, math, and braces from text."""
    if not text:
        return ""
    t = _LATEX_MATH_RE.sub(" ", text)
    t = _LATEX_CMD_RE.sub(" ", t)
    t = _BRACES_RE.sub("", t)
    t = re.sub(r"\s+", " ", t)
    return t.strip()


def normalize_for_match(text: str | None) -> str:
    """Normalize free text for fuzzy matching.

    Removes LaTeX, HTML tags, diacritics, punctuation, and extra whitespace.
    Case-folds, and keeps letters of any script.
    """
    if not text:
        return ""
    t = _HTML_TAG_RE.sub(" ", text)
    t = latex_to_plain(t)
    t = strip_diacritics(t).casefold()
    t = _NON_WORD_RE.sub(" ", t)
    t = re.sub(r"\s+", " ", t).strip()
    return t


# ------------- Author Handling -------------


def split_authors_bibtex(author_field: str) -> list[str]:
    """Split BibTeX 'A and B and C' author string into individual names."""
    if not author_field:
        return []
    return [p.strip() for p in re.split(r"\s+\band\b\s+", author_field, flags=re.IGNORECASE) if p.strip()]


def compose_author_name(given: str | None, family: str | None, fallback: str | None = None) -> str:
    """Build a display name from given/family parts, falling back to a literal name."""
    given = (given or "").strip()
    family = (family or "").strip()
    if given and family:
        return f"{given} {family}"
    if fallback and fallback.strip():
        return fallback.strip()
    return family or given


# ------------- Matching Utilities -------------


def jaccard_similarity(a: Iterable[str], b: Iterable[str]) -> float:
    """Compute Jaccard similarity between two iterables of strings."""
    sa, sb = set(a), set(b)
    if not sa and not sb:
        return 0.0
    inter = len(sa & sb)
    union = len(sa | sb)
    return inter / union if union else 0.0


def significant_tokens(text: str | None, min_length: int = 3) -> set[str]:
    """Word set of the normalized text, dropping tokens shorter than min_length."""
    return {tok for tok in normalize_for_match(text).split() if len(tok) >= min_length}


def token_overlap_similarity(a: str | None, b: str | None) -> float:
    """Token-overlap ratio: |A ∩ B| / |A ∪ B| over words longer than two characters.

    Identical normalized strings always score 1.0, even when every token is short.
    When neither side has a long token, all tokens are compared instead, and
    strings equal once spaces are removed ("On AI" vs "On A.I.") score 1.0.
    """
    norm_a = normalize_for_match(a)
    norm_b = normalize_for_match(b)
    if not norm_a or not norm_b:
        return 0.0
    if norm_a == norm_b:
        return 1.0
    tokens_a = significant_tokens(norm_a)
    tokens_b = significant_tokens(norm_b)
    if not tokens_a and not tokens_b:
        if norm_a.replace(" ", "") == norm_b.replace(" ", ""):
            return 1.0
        return jaccard_similarity(norm_a.split(), norm_b.split())
    return jaccard_similarity(tokens_a, tokens_b)


# ------------- DOI & PMID Utilities -------------


def normalize_doi(raw: str | None, from_text: bool = False) -> str | None:
    """Canonicalize a DOI for comparison and lookup.

    Lowercases, trims and strips a leading ``https://doi.org/`` prefix. When the
    DOI was extracted from free text, trailing punctuation is stripped too.
    Returns None for absent values ("", "0", "unavailable").
    """
    if raw is None:
        return None
    d = raw.strip().lower()
    d = DOI_PREFIX_RE.sub("", d).strip()
    if from_text:
        d = d.rstrip(DOI_TRAILING_PUNCT + " \t\r\n")
    if d in ABSENT_DOI_VALUES:
        return None
    return d


def doi_url(doi: str) -> str:
    """Convert a DOI to a URL."""
    return f"https://doi.org/{doi}"


def normalize_pmid(raw: str | int | None) -> str | None:
    """Canonicalize a PubMed id. Returns None unless the value is numeric."""
    if raw is None:
        return None
    p = str(raw).strip()
    p = re.sub(r"^pmid:?\s*", "", p, flags=re.IGNORECASE)
    if not p.isdigit():
        return None
    return p.lstrip("0") or None


def extract_doi_from_text(text: str | None) -> str | None:
    """Extract and normalize the first DOI found in a URL or free text."""
    if not text:
        return None
    m = DOI_IN_TEXT_RE.search(text)
    if not m:
        return None
    return normalize_doi(m.group(1), from_text=True)


def extract_pmid_from_text(text: str | None) -> str | None:
    """Extract a PubMed id from a pubmed URL or a 'PMID: N' mention."""
    if not text:
        return None
    m = PMID_URL_RE.search(text) or PMID_IN_TEXT_RE.search(text)
    if m:
        return normalize_pmid(m.group(1))
    return None


# ------------- API Response Converters -------------


def _first_year(msg: dict[str, Any], keys: Iterable[str]) -> int:
    """First populated year among Crossref date fields, 0 when none is set."""
    for key in keys:
        parts = (msg.get(key) or {}).get("date-parts") or []
        if parts and parts[0] and parts[0][0]:
            try:
                return int(parts[0][0])
            except (TypeError, ValueError):
                continue
    return 0


def crossref_message_to_record(msg: dict[str, Any]) -> WorkRecord:
    """Convert a Crossref works message to a WorkRecord."""
    titles = msg.get("title") or []
    if isinstance(titles, str):
        titles = [titles]
    title = _HTML_TAG_RE.sub("", titles[0]) if titles else ""

    authors = []
    for a in msg.get("author") or []:
        given = a.get("given")
        family = a.get("family")
        authors.append(
            Author(
                given=given,
                family=family,
                display_name=compose_author_name(given, family, a.get("name") or a.get("literal")),
            )
        )

    container = msg.get("container-title") or []
    year = _first_year(msg, ("published-print", "published-online", "issued", "created"))

    return WorkRecord(
        doi=normalize_doi(msg.get("DOI")) or "",
        title=title,
        authors=tuple(authors),
        year=year,
        journal=container[0] if container else "",
        publisher=msg.get("publisher"),
        type=msg.get("type"),
        volume=msg.get("volume"),
        issue=msg.get("issue") or (msg.get("journal-issue") or {}).get("issue"),
        pages=msg.get("page"),
        raw=msg,
    )


def openalex_work_to_record(work: dict[str, Any]) -> WorkRecord:
    """Convert an OpenAlex work object to a WorkRecord.

    OpenAlex DOIs come as full URLs and authors only carry a display name.
    """
    authors = []
    for authorship in work.get("authorships") or []:
        author_obj = authorship.get("author") or {}
        display_name = author_obj.get("display_name") or authorship.get("raw_author_name") or ""
        authors.append(Author(display_name=display_name))

    primary_location = work.get("primary_location") or {}
    source = primary_location.get("source") or {}

    biblio = work.get("biblio") or {}
    first_page = biblio.get("first_page")
    last_page = biblio.get("last_page")
    pages = None
    if first_page:
        pages = f"{first_page}-{last_page}" if last_page and last_page != first_page else str(first_page)

    try:
        year = int(work.get("publication_year") or 0)
    except (TypeError, ValueError):
        year = 0

    return WorkRecord(
        doi=normalize_doi(work.get("doi")) or "",
        title=work.get("title") or work.get("display_name") or "",
        authors=tuple(authors),
        year=year,
        journal=source.get("display_name") or "",
        publisher=source.get("host_organization_name"),
        type=work.get("type"),
        volume=biblio.get("volume"),
        issue=biblio.get("issue"),
        pages=pages,
        raw=work,
    )


# ------------- Async HTTP Client -------------


class AsyncHttpClient:
    """Async HTTP client with a fixed per-request timeout and retry logic.

    Retryable statuses (429/5xx) are retried with exponential backoff; once the
    retries are exhausted the last response is returned as-is. Transport errors
    (including timeouts) are re-raised after the final attempt so callers can
    map them to an indeterminate outcome.
    """

    RETRYABLE_STATUS = {429, 500, 502, 503, 504}

    def __init__(
        self,
        timeout: float = 20.0,
        user_agent: str = "citation-verifier/0.1",
        max_retries: int = 2,
        backoff: float = 1.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the async HTTP client.

        Args:
            timeout: Request timeout in seconds
            user_agent: User-Agent header value
            max_retries: Extra attempts for retryable statuses and transport errors
            backoff: Initial backoff delay in seconds (doubles per retry, capped at 16s)
            transport: Optional httpx transport (e.g. httpx.MockTransport in tests)
        """
        self.timeout = timeout
        self.user_agent = user_agent
        self.max_retries = max(max_retries, 0)
        self.backoff = backoff
        self.transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def client(self) -> httpx.AsyncClient:
        """Get or create the async HTTP client instance."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                headers={"User-Agent": self.user_agent},
                follow_redirects=True,
                transport=self.transport,
            )
        return self._client

    async def request(
        self,
        method: str,
        url: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        accept: str = "application/json",
    ) -> httpx.Response:
        """Make an async HTTP request with retry.

        Raises:
            httpx.TransportError: If the request keeps failing at the transport level
        """
        request_headers = {**(headers or {}), "Accept": accept}
        delay = self.backoff
        attempt = 0
        while True:
            try:
                resp = await self.client.request(method, url, params=params, headers=request_headers)
            except httpx.TransportError as exc:
                if attempt >= self.max_retries:
                    raise
                logger.debug("Transport error for %s (attempt %d): %s", url, attempt + 1, exc)
            else:
                if resp.status_code not in self.RETRYABLE_STATUS or attempt >= self.max_retries:
                    return resp
                logger.debug("Retryable status %d for %s (attempt %d)", resp.status_code, url, attempt + 1)
            attempt += 1
            await asyncio.sleep(delay)
            delay = min(delay * 2, 16.0)

    async def get(
        self,
        url: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        accept: str = "application/json",
    ) -> httpx.Response:
        """Convenience method for GET requests."""
        return await self.request("GET", url, params=params, headers=headers, accept=accept)

    async def close(self) -> None:
        """Close the async HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> AsyncHttpClient:
        """Enter async context manager."""
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Exit async context manager."""
        await self.close()
