"""Shared fixtures for citation_verifier tests."""

from __future__ import annotations

import logging
from typing import Any

import httpx
import pytest

from citation_verifier import (
    AsyncHttpClient,
    CitationInput,
    CitationVerifier,
    LookupOutcome,
    SourceConfig,
    WorkRecord,
)
from citation_verifier.utils import crossref_message_to_record, openalex_work_to_record

# ------------- Payload Factories -------------


@pytest.fixture
def make_crossref_message():
    """Factory fixture for Crossref ``message`` payloads."""

    def _make(**kwargs) -> dict[str, Any]:
        msg = {
            "DOI": "10.1000/jml.2020.001",
            "title": ["Deep Learning for Natural Language Processing"],
            "author": [
                {"given": "John", "family": "Smith"},
                {"given": "Jane", "family": "Doe"},
            ],
            "container-title": ["Journal of Machine Learning"],
            "published-print": {"date-parts": [[2020, 3]]},
            "publisher": "Example Publisher",
            "type": "journal-article",
            "volume": "42",
            "issue": "1",
            "page": "1-20",
        }
        msg.update(kwargs)
        return msg

    return _make


@pytest.fixture
def make_openalex_work():
    """Factory fixture for OpenAlex work payloads."""

    def _make(**kwargs) -> dict[str, Any]:
        work = {
            "id": "https://openalex.org/W123",
            "doi": "https://doi.org/10.1000/jml.2020.001",
            "title": "Deep Learning for Natural Language Processing",
            "publication_year": 2020,
            "type": "article",
            "authorships": [
                {"author": {"display_name": "John Smith"}},
                {"author": {"display_name": "Jane Doe"}},
            ],
            "primary_location": {
                "source": {
                    "display_name": "Journal of Machine Learning",
                    "host_organization_name": "Example Publisher",
                }
            },
            "biblio": {"volume": "42", "issue": "1", "first_page": "1", "last_page": "20"},
            "is_retracted": False,
        }
        work.update(kwargs)
        return work

    return _make


@pytest.fixture
def sample_record(make_crossref_message) -> WorkRecord:
    """A WorkRecord built from the default Crossref payload."""
    return crossref_message_to_record(make_crossref_message())


@pytest.fixture
def sample_openalex_record(make_openalex_work) -> WorkRecord:
    """A WorkRecord built from the default OpenAlex payload."""
    return openalex_work_to_record(make_openalex_work())


@pytest.fixture
def sample_citation() -> CitationInput:
    """A citation matching the default payloads exactly."""
    return CitationInput(
        doi="10.1000/jml.2020.001",
        title="Deep Learning for Natural Language Processing",
        authors=["John Smith", "Jane Doe"],
        year=2020,
        journal="Journal of Machine Learning",
    )


# ------------- Fakes -------------


@pytest.fixture
def logger():
    """Create a test logger."""
    return logging.getLogger("test")


class FakeSource:
    """In-memory stand-in for a SourceClient that records its calls."""

    def __init__(
        self,
        name: str,
        outcome: LookupOutcome | None = None,
        search_results: list[WorkRecord] | None = None,
        search_error: Exception | None = None,
    ):
        self.name = name
        self.outcome = outcome or LookupOutcome.not_found()
        self.search_results = list(search_results or [])
        self.search_error = search_error
        self.calls: list[tuple[str, Any]] = []

    async def get_work(self, doi: str) -> LookupOutcome:
        self.calls.append(("get_work", doi))
        return self.outcome

    async def search_by_title_author_year(self, title, author=None, year=None) -> list[WorkRecord]:
        self.calls.append(("search", (title, author, year)))
        if self.search_error is not None:
            raise self.search_error
        return list(self.search_results)

    async def close(self) -> None:
        self.calls.append(("close", None))


class FakeResolver:
    """PMID resolver returning a fixed mapping."""

    def __init__(self, mapping: dict[str, str] | None = None):
        self.mapping = mapping or {}
        self.calls: list[str] = []

    async def resolve_pmid(self, pmid: str) -> str | None:
        self.calls.append(pmid)
        return self.mapping.get(pmid)


@pytest.fixture
def fake_source():
    """Factory fixture for FakeSource instances."""

    def _create(name: str = "fake", **kwargs) -> FakeSource:
        return FakeSource(name, **kwargs)

    return _create


@pytest.fixture
def make_verifier(logger):
    """Factory fixture wiring FakeSources into a CitationVerifier."""

    def _create(primary=None, secondary=None, resolver=None, config=None) -> CitationVerifier:
        return CitationVerifier(
            primary or FakeSource("crossref"),
            secondary or FakeSource("openalex"),
            config=config,
            pmid_resolver=resolver,
            logger=logger,
        )

    return _create


# ------------- HTTP Mocking -------------


@pytest.fixture
def source_config():
    """SourceConfig pointing at a fake host."""

    def _create(base_url: str = "https://api.test") -> SourceConfig:
        return SourceConfig(base_url=base_url, contact_email="tests@example.org", timeout=5.0, max_retries=0)

    return _create


@pytest.fixture
def mock_http():
    """Factory fixture for an AsyncHttpClient backed by httpx.MockTransport.

    The handler receives each httpx.Request and returns an httpx.Response (or
    raises an httpx exception). Requests are recorded on ``client.requests``.
    """

    def _create(handler, max_retries: int = 0) -> AsyncHttpClient:
        requests: list[httpx.Request] = []

        def _record(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return handler(request)

        client = AsyncHttpClient(
            timeout=5.0,
            user_agent="test-agent",
            max_retries=max_retries,
            backoff=0.0,
            transport=httpx.MockTransport(_record),
        )
        client.requests = requests
        return client

    return _create
