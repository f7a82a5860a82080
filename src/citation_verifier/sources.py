"""Bibliographic source clients.

Each client wraps one external API and normalizes its payloads into
WorkRecord. Single-identifier lookups return a LookupOutcome value and never
raise: a 404 is a confirmed absence, anything else that goes wrong (timeouts,
5xx, malformed bodies, unexpected exceptions) is an indeterminate error.
Searches are best-effort and return an empty list on failure.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any
from urllib.parse import quote

from citation_verifier.config import SourceConfig
from citation_verifier.models import LookupOutcome, WorkRecord
from citation_verifier.utils import (
    AsyncHttpClient,
    crossref_message_to_record,
    normalize_doi,
    normalize_pmid,
    openalex_work_to_record,
)

__all__ = [
    "SourceClient",
    "CrossrefSource",
    "OpenAlexSource",
    "EuropePMCResolver",
]


def _http_for(config: SourceConfig) -> AsyncHttpClient:
    return AsyncHttpClient(
        timeout=config.timeout,
        user_agent=config.user_agent_header(),
        max_retries=config.max_retries,
    )


class SourceClient(ABC):
    """Lookup/search capability against one external bibliographic source."""

    name = "source"

    def __init__(
        self,
        config: SourceConfig,
        http: AsyncHttpClient | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.config = config
        self.http = http if http is not None else _http_for(config)
        self.logger = logger or logging.getLogger(__name__)

    @abstractmethod
    async def get_work(self, doi: str) -> LookupOutcome:
        """Look up a single DOI."""

    @abstractmethod
    async def search_by_title_author_year(
        self, title: str, author: str | None = None, year: int | None = None
    ) -> list[WorkRecord]:
        """Best-effort fuzzy search; empty on any failure."""

    def _headers(self) -> dict[str, str]:
        return {"User-Agent": self.config.user_agent_header()}

    async def _lookup(
        self,
        url: str,
        params: dict[str, Any] | None,
        extract: Callable[[Any], Any],
        convert: Callable[[dict[str, Any]], WorkRecord],
    ) -> LookupOutcome:
        """GET a single-work endpoint and map the response to a LookupOutcome."""
        try:
            resp = await self.http.get(url, params=params, headers=self._headers())
        except Exception as exc:
            self.logger.debug("%s lookup failed for %s: %s", self.name, url, exc)
            return LookupOutcome.error(f"{self.name} request failed: {str(exc) or type(exc).__name__}")

        if resp.status_code == 404:
            return LookupOutcome.not_found()
        if not resp.is_success:
            return LookupOutcome.error(f"{self.name} API error: {resp.status_code}")

        try:
            payload = extract(resp.json())
        except (ValueError, AttributeError, KeyError, TypeError) as exc:
            return LookupOutcome.error(f"{self.name} returned a malformed body: {exc}")
        if not isinstance(payload, dict) or not payload:
            return LookupOutcome.error(f"{self.name} returned a malformed body")

        try:
            work = convert(payload)
        except (ValueError, AttributeError, KeyError, TypeError, IndexError) as exc:
            return LookupOutcome.error(f"{self.name} payload could not be parsed: {exc}")
        return LookupOutcome.found(work)

    async def _search(
        self,
        url: str,
        params: dict[str, Any],
        extract: Callable[[Any], Any],
        convert: Callable[[dict[str, Any]], WorkRecord],
    ) -> list[WorkRecord]:
        """GET a search endpoint and convert its items, swallowing failures into []."""
        try:
            resp = await self.http.get(url, params=params, headers=self._headers())
            if resp.status_code != 200:
                self.logger.debug("%s search returned %d", self.name, resp.status_code)
                return []
            items = extract(resp.json()) or []
            return [convert(item) for item in items if isinstance(item, dict)]
        except Exception as e:
            self.logger.debug("%s search failed: %s", self.name, e)
            return []

    async def close(self) -> None:
        await self.http.close()


class CrossrefSource(SourceClient):
    """Crossref REST API (primary source).

    ``GET {base}/works/{doi}`` wraps the work in a ``message`` object.
    """

    name = "crossref"

    def __init__(
        self,
        config: SourceConfig | None = None,
        http: AsyncHttpClient | None = None,
        logger: logging.Logger | None = None,
        rows: int = 10,
    ) -> None:
        super().__init__(config or SourceConfig.crossref_from_env(), http, logger)
        self.rows = rows

    async def get_work(self, doi: str) -> LookupOutcome:
        normalized = normalize_doi(doi)
        if not normalized:
            return LookupOutcome.error("crossref: no DOI to look up")
        url = f"{self.config.base_url}/works/{quote(normalized, safe='')}"
        return await self._lookup(url, None, lambda body: body["message"], crossref_message_to_record)

    async def search_by_title_author_year(
        self, title: str, author: str | None = None, year: int | None = None
    ) -> list[WorkRecord]:
        if not title or not title.strip():
            return []
        params: dict[str, Any] = {"query.bibliographic": title, "rows": self.rows}
        if author:
            params["query.author"] = author
        return await self._search(
            f"{self.config.base_url}/works",
            params,
            lambda body: body.get("message", {}).get("items", []),
            crossref_message_to_record,
        )


class OpenAlexSource(SourceClient):
    """OpenAlex API (secondary source).

    ``GET {base}/works/doi:{doi}?mailto=...`` returns the work itself.
    """

    name = "openalex"

    def __init__(
        self,
        config: SourceConfig | None = None,
        http: AsyncHttpClient | None = None,
        logger: logging.Logger | None = None,
        per_page: int = 10,
    ) -> None:
        super().__init__(config or SourceConfig.openalex_from_env(), http, logger)
        self.per_page = per_page

    async def get_work(self, doi: str) -> LookupOutcome:
        normalized = normalize_doi(doi)
        if not normalized:
            return LookupOutcome.error("openalex: no DOI to look up")
        url = f"{self.config.base_url}/works/doi:{quote(normalized, safe='')}"
        return await self._lookup(
            url,
            {"mailto": self.config.contact_email},
            lambda body: body,
            openalex_work_to_record,
        )

    @staticmethod
    def _filter_value(text: str) -> str:
        # Commas separate filters in OpenAlex syntax
        return " ".join(text.replace(",", " ").replace(":", " ").split())

    async def search_by_title_author_year(
        self, title: str, author: str | None = None, year: int | None = None
    ) -> list[WorkRecord]:
        filters: list[str] = []
        if title and title.strip():
            filters.append(f"title.search:{self._filter_value(title)}")
        if author and author.strip():
            filters.append(f"authorships.author.display_name.search:{self._filter_value(author)}")
        if year:
            filters.append(f"publication_year:{year}")
        if not filters:
            return []
        params = {
            "filter": ",".join(filters),
            "per_page": self.per_page,
            "mailto": self.config.contact_email,
        }
        return await self._search(
            f"{self.config.base_url}/works",
            params,
            lambda body: body.get("results", []),
            openalex_work_to_record,
        )


class EuropePMCResolver:
    """Resolves PubMed ids to DOIs through the Europe PMC search API."""

    name = "europepmc"

    def __init__(
        self,
        config: SourceConfig | None = None,
        http: AsyncHttpClient | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.config = config or SourceConfig.europepmc_from_env()
        self.http = http if http is not None else _http_for(self.config)
        self.logger = logger or logging.getLogger(__name__)

    async def resolve_pmid(self, pmid: str) -> str | None:
        """Return the normalized DOI for a PMID, or None when it cannot be resolved."""
        normalized = normalize_pmid(pmid)
        if not normalized:
            return None
        params = {
            "query": f"EXT_ID:{normalized} AND SRC:MED",
            "format": "json",
            "resultType": "lite",
            "email": self.config.contact_email,
        }
        try:
            resp = await self.http.get(
                f"{self.config.base_url}/search",
                params=params,
                headers={"User-Agent": self.config.user_agent_header()},
            )
            if resp.status_code != 200:
                self.logger.debug("Europe PMC returned %d for PMID %s", resp.status_code, normalized)
                return None
            results = resp.json().get("resultList", {}).get("result", []) or []
        except Exception as e:
            self.logger.debug("Europe PMC lookup failed for PMID %s: %s", normalized, e)
            return None

        for result in results:
            if str(result.get("pmid") or result.get("id") or "") == normalized:
                return normalize_doi(result.get("doi"))
        return None

    async def close(self) -> None:
        await self.http.close()
