"""Tests for batch verification and the result cache."""

from __future__ import annotations

import asyncio

import pytest

from citation_verifier import (
    CitationContext,
    CitationInput,
    CitationStatus,
    LookupOutcome,
    SourceRole,
    TaggedCitation,
    VerificationResult,
)
from citation_verifier.batch import BatchCoordinator, ResultCache, cache_key


def verified() -> VerificationResult:
    return VerificationResult(exists=True, confidence=1.0, source=SourceRole.PRIMARY, status=CitationStatus.VERIFIED)


class ScriptedVerifier:
    """Verifier double answering from a per-DOI/title script.

    Script values are VerificationResults, exceptions to raise, or
    ``(delay, result)`` tuples to complete out of order.
    """

    def __init__(self, script=None):
        self.script = script or {}
        self.calls: list[CitationInput] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def verify(self, citation: CitationInput) -> VerificationResult:
        self.calls.append(citation)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            answer = self.script.get(citation.doi or citation.title, verified())
            if isinstance(answer, tuple):
                delay, answer = answer
                await asyncio.sleep(delay)
            else:
                await asyncio.sleep(0)
            if isinstance(answer, Exception):
                raise answer
            return answer
        finally:
            self.in_flight -= 1


def result_with_confidence(confidence: float) -> VerificationResult:
    return VerificationResult(
        exists=True, confidence=confidence, source=SourceRole.PRIMARY, status=CitationStatus.VERIFIED
    )


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


# ------------- Cache Key -------------


class TestCacheKey:
    """Tests for cache_key priority and normalization."""

    def test_doi_first(self):
        citation = CitationInput(doi="HTTPS://DOI.ORG/10.1/ABC", pmid="123", title="T")
        assert cache_key(citation) == "doi:10.1/abc"

    def test_pmid_second(self):
        assert cache_key(CitationInput(pmid="PMID: 0123", title="T")) == "pmid:123"

    def test_title_third(self):
        assert cache_key(CitationInput(title="Deep  Learning!")) == "title:deep learning"

    def test_absent_doi_value_skipped(self):
        assert cache_key(CitationInput(doi="unavailable", title="T")) == "title:t"

    def test_no_key(self):
        assert cache_key(CitationInput(url="https://example.org")) is None


# ------------- ResultCache -------------


class TestResultCache:
    """Tests for TTL expiry and LRU eviction."""

    def test_get_set(self):
        cache = ResultCache()
        cache.set("doi:a", verified())
        assert cache.get("doi:a").status is CitationStatus.VERIFIED
        assert cache.get("doi:b") is None
        assert len(cache) == 1

    def test_ttl_expiry(self):
        clock = FakeClock()
        cache = ResultCache(ttl_seconds=10, clock=clock)
        cache.set("doi:a", verified())
        clock.now = 10
        assert cache.get("doi:a") is not None
        clock.now = 10.5
        assert cache.get("doi:a") is None
        assert "doi:a" not in cache

    def test_lru_eviction(self):
        cache = ResultCache(max_entries=2)
        cache.set("a", verified())
        cache.set("b", verified())
        cache.get("a")
        cache.set("c", verified())
        assert "a" in cache
        assert "b" not in cache
        assert "c" in cache

    def test_clear_and_invalidate(self):
        cache = ResultCache()
        cache.set("a", verified())
        cache.set("b", verified())
        cache.invalidate("a")
        assert "a" not in cache
        cache.clear()
        assert len(cache) == 0

    def test_returns_copies(self):
        cache = ResultCache()
        cache.set("a", verified())
        cache.get("a").errors.append("mutated")
        assert cache.get("a").errors == []

    def test_invalid_capacity(self):
        with pytest.raises(ValueError):
            ResultCache(max_entries=0)


# ------------- BatchCoordinator -------------


class TestCheckBatch:
    """Tests for ordering, failure isolation, windowing and caching."""

    def test_index_aligned_despite_completion_order(self, logger):
        script = {
            "10.1/slow": (0.05, result_with_confidence(0.1)),
            "10.1/medium": (0.02, result_with_confidence(0.2)),
            "10.1/fast": (0.0, result_with_confidence(0.3)),
        }
        coordinator = BatchCoordinator(ScriptedVerifier(script), logger=logger)
        inputs = [CitationInput(doi=d) for d in ("10.1/slow", "10.1/medium", "10.1/fast")]

        results = asyncio.run(coordinator.check_batch(inputs))
        assert [r.confidence for r in results] == [0.1, 0.2, 0.3]

    def test_failure_isolated_to_one_input(self, logger):
        script = {"10.1/bad": RuntimeError("kaboom")}
        coordinator = BatchCoordinator(ScriptedVerifier(script), logger=logger)
        inputs = [CitationInput(doi="10.1/a"), CitationInput(doi="10.1/bad"), CitationInput(doi="10.1/c")]

        results = asyncio.run(coordinator.check_batch(inputs))
        assert len(results) == 3
        assert [r.status for r in results] == [
            CitationStatus.VERIFIED,
            CitationStatus.SKIP,
            CitationStatus.VERIFIED,
        ]
        assert "kaboom" in results[1].errors[0]

    def test_malformed_input_isolated_to_one_input(self, logger):
        verifier = ScriptedVerifier()
        coordinator = BatchCoordinator(verifier, cache=ResultCache(), logger=logger)
        inputs = [CitationInput(doi="10.1/a"), CitationInput(title=1984), CitationInput(doi="10.1/c")]

        results = asyncio.run(coordinator.check_batch(inputs))
        assert [r.status for r in results] == [
            CitationStatus.VERIFIED,
            CitationStatus.SKIP,
            CitationStatus.VERIFIED,
        ]
        assert results[1].errors[0].startswith("unexpected error")
        assert [c.doi for c in verifier.calls] == ["10.1/a", "10.1/c"]

    def test_non_string_json_fields_are_verified(self, logger):
        verifier = ScriptedVerifier()
        coordinator = BatchCoordinator(verifier, logger=logger)
        inputs = [CitationInput(doi="10.1/a"), CitationInput.from_dict({"title": 1984})]

        results = asyncio.run(coordinator.check_batch(inputs))
        assert [r.status for r in results] == [CitationStatus.VERIFIED, CitationStatus.VERIFIED]
        assert verifier.calls[1].title == "1984"

    def test_empty_batch(self, logger):
        coordinator = BatchCoordinator(ScriptedVerifier(), logger=logger)
        assert asyncio.run(coordinator.check_batch([])) == []

    @pytest.mark.parametrize("concurrency", [1, 3, 8])
    def test_window_bounds_in_flight(self, logger, concurrency):
        verifier = ScriptedVerifier({f"10.1/{i}": (0.001, verified()) for i in range(20)})
        coordinator = BatchCoordinator(verifier, concurrency=concurrency, logger=logger)
        results = asyncio.run(coordinator.check_batch([CitationInput(doi=f"10.1/{i}") for i in range(20)]))
        assert len(results) == 20
        assert verifier.max_in_flight <= concurrency

    def test_concurrency_floor(self, logger):
        assert BatchCoordinator(ScriptedVerifier(), concurrency=0, logger=logger).concurrency == 1

    def test_duplicates_looked_up_once(self, logger):
        verifier = ScriptedVerifier()
        coordinator = BatchCoordinator(verifier, logger=logger)
        inputs = [
            CitationInput(doi="10.1/a"),
            CitationInput(doi="https://doi.org/10.1/A"),
            CitationInput(doi="10.1/b"),
        ]
        results = asyncio.run(coordinator.check_batch(inputs))
        assert len(verifier.calls) == 2
        assert len(results) == 3
        assert results[0] == results[1]
        assert results[0] is not results[1]

    def test_inputs_without_key_are_each_verified(self, logger):
        verifier = ScriptedVerifier()
        coordinator = BatchCoordinator(verifier, logger=logger)
        asyncio.run(coordinator.check_batch([CitationInput(), CitationInput()]))
        assert len(verifier.calls) == 2

    def test_cache_short_circuits_later_calls(self, logger):
        verifier = ScriptedVerifier()
        coordinator = BatchCoordinator(verifier, cache=ResultCache(), logger=logger)
        asyncio.run(coordinator.check_batch([CitationInput(doi="10.1/a")]))
        results = asyncio.run(coordinator.check_batch([CitationInput(doi="10.1/A"), CitationInput(doi="10.1/b")]))
        assert [c.doi for c in verifier.calls] == ["10.1/a", "10.1/b"]
        assert all(r.status is CitationStatus.VERIFIED for r in results)

    def test_skip_results_not_cached(self, logger):
        verifier = ScriptedVerifier({"10.1/flaky": VerificationResult.skip(["timeout"])})
        cache = ResultCache()
        coordinator = BatchCoordinator(verifier, cache=cache, logger=logger)
        asyncio.run(coordinator.check_batch([CitationInput(doi="10.1/flaky")]))
        asyncio.run(coordinator.check_batch([CitationInput(doi="10.1/flaky")]))
        assert len(verifier.calls) == 2
        assert len(cache) == 0

    def test_failures_not_cached(self, logger):
        cache = ResultCache()
        coordinator = BatchCoordinator(ScriptedVerifier({"10.1/bad": ValueError("x")}), cache=cache, logger=logger)
        asyncio.run(coordinator.check_batch([CitationInput(doi="10.1/bad")]))
        assert len(cache) == 0

    def test_sync_wrapper(self, logger):
        coordinator = BatchCoordinator(ScriptedVerifier(), logger=logger)
        results = coordinator.check_batch_sync([CitationInput(doi="10.1/a")])
        assert results[0].status is CitationStatus.VERIFIED


class TestCheckTagged:
    """Tests for the page-scanner boundary."""

    def test_results_keyed_by_id(self, logger):
        script = {"10.1/ghost": VerificationResult.skip()}
        coordinator = BatchCoordinator(ScriptedVerifier(script), logger=logger)
        items = [
            TaggedCitation("c1", CitationInput(doi="10.1/real"), CitationContext.CURRENT_ARTICLE),
            TaggedCitation("c2", CitationInput(doi="10.1/ghost")),
        ]
        results = asyncio.run(coordinator.check_tagged(items))
        assert results["c1"].status is CitationStatus.VERIFIED
        assert results["c2"].status is CitationStatus.SKIP

    def test_from_dict(self):
        item = TaggedCitation.from_dict({"id": 7, "doi": "10.1/a", "context": "current-article"})
        assert item.id == "7"
        assert item.citation.doi == "10.1/a"
        assert item.context is CitationContext.CURRENT_ARTICLE


class TestEndToEnd:
    """BatchCoordinator driving the real CitationVerifier with fake sources."""

    def test_mixed_batch(self, make_verifier, sample_record, fake_source):
        class ByDoi:
            name = "crossref"

            async def get_work(self, doi):
                if doi == "10.1000/jml.2020.001":
                    return LookupOutcome.found(sample_record)
                if doi == "10.1/flaky":
                    return LookupOutcome.error("timeout")
                return LookupOutcome.not_found()

            async def search_by_title_author_year(self, title, author=None, year=None):
                return []

        secondary = fake_source("openalex", outcome=LookupOutcome.error("timeout"))
        coordinator = BatchCoordinator(make_verifier(ByDoi(), secondary), cache=ResultCache())
        inputs = [
            CitationInput(doi="10.1000/jml.2020.001"),
            CitationInput(doi="10.1/ghost"),
            CitationInput(doi="10.1/flaky"),
            CitationInput(),
        ]
        results = asyncio.run(coordinator.check_batch(inputs))
        assert [r.status for r in results] == [
            CitationStatus.VERIFIED,
            CitationStatus.FAKE_LIKELY,
            CitationStatus.SKIP,
            CitationStatus.SKIP,
        ]
