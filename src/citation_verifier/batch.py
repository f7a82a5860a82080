"""Batch verification with windowed concurrency and an in-memory result cache."""

from __future__ import annotations

import asyncio
import logging
import time
from collections import OrderedDict
from collections.abc import Callable, Iterable, Sequence
from dataclasses import replace
from typing import TYPE_CHECKING

from citation_verifier.models import CitationInput, CitationStatus, TaggedCitation, VerificationResult
from citation_verifier.utils import normalize_doi, normalize_for_match, normalize_pmid

if TYPE_CHECKING:
    from citation_verifier.verifier import CitationVerifier

__all__ = ["cache_key", "ResultCache", "BatchCoordinator"]


def cache_key(citation: CitationInput) -> str | None:
    """Key a citation by its first non-empty normalized DOI, PMID or title."""
    doi = normalize_doi(citation.doi)
    if doi:
        return f"doi:{doi}"
    pmid = normalize_pmid(citation.pmid)
    if pmid:
        return f"pmid:{pmid}"
    title = normalize_for_match(citation.title)
    if title:
        return f"title:{title}"
    return None


def _copy_result(result: VerificationResult) -> VerificationResult:
    return replace(result, discrepancies=list(result.discrepancies), errors=list(result.errors))


class ResultCache:
    """In-memory LRU cache of verification results with a time-to-live.

    Lives for the lifetime of the process; nothing is persisted.
    """

    def __init__(
        self,
        ttl_seconds: float = 24 * 60 * 60,
        max_entries: int = 1024,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self.clock = clock
        self._data: OrderedDict[str, tuple[float, VerificationResult]] = OrderedDict()

    def get(self, key: str) -> VerificationResult | None:
        """Return a copy of the cached result, or None if missing or expired."""
        item = self._data.get(key)
        if item is None:
            return None
        stored_at, result = item
        if self.clock() - stored_at > self.ttl_seconds:
            del self._data[key]
            return None
        self._data.move_to_end(key)
        return _copy_result(result)

    def set(self, key: str, result: VerificationResult) -> None:
        self._data[key] = (self.clock(), _copy_result(result))
        self._data.move_to_end(key)
        while len(self._data) > self.max_entries:
            self._data.popitem(last=False)

    def invalidate(self, key: str) -> None:
        self._data.pop(key, None)

    def clear(self) -> None:
        """Clear all cached entries."""
        self._data.clear()

    def __len__(self) -> int:
        return len(self._data)

    def __contains__(self, key: object) -> bool:
        return key in self._data


class BatchCoordinator:
    """Runs a CitationVerifier over many citations.

    Citations are verified in fixed-size windows so at most ``concurrency``
    lookups are in flight. Results line up with the inputs by index no matter
    in which order the lookups complete.
    """

    def __init__(
        self,
        verifier: CitationVerifier,
        cache: ResultCache | None = None,
        concurrency: int = 8,
        logger: logging.Logger | None = None,
    ) -> None:
        self.verifier = verifier
        self.cache = cache
        self.concurrency = max(1, concurrency)
        self.logger = logger or logging.getLogger(__name__)

    async def check_batch(self, inputs: Sequence[CitationInput]) -> list[VerificationResult]:
        """Verify citations; result[i] answers inputs[i]."""
        results: list[VerificationResult | None] = [None] * len(inputs)

        # Identical keys within one batch share a single lookup
        pending: dict[str, list[int]] = {}
        work: list[tuple[str | None, list[int]]] = []
        for index, citation in enumerate(inputs):
            try:
                key = cache_key(citation)
            except Exception as e:
                self.logger.error("Error preparing citation %d: %s", index + 1, e)
                results[index] = VerificationResult.skip([f"unexpected error: {e}"])
                continue
            if key is None:
                work.append((None, [index]))
                continue
            if self.cache is not None:
                cached = self.cache.get(key)
                if cached is not None:
                    self.logger.debug("Cache hit for %s", key)
                    results[index] = cached
                    continue
            if key in pending:
                pending[key].append(index)
            else:
                pending[key] = [index]
                work.append((key, pending[key]))

        total_windows = (len(work) + self.concurrency - 1) // self.concurrency
        for window_no, start in enumerate(range(0, len(work), self.concurrency), 1):
            window = work[start : start + self.concurrency]
            outcomes = await asyncio.gather(
                *(self.verifier.verify(inputs[indices[0]]) for _, indices in window),
                return_exceptions=True,
            )
            for (key, indices), outcome in zip(window, outcomes):
                if isinstance(outcome, BaseException):
                    if not isinstance(outcome, Exception):
                        raise outcome
                    self.logger.error("Error verifying citation %d: %s", indices[0] + 1, outcome)
                    outcome = VerificationResult.skip([f"unexpected error: {outcome}"])
                elif key is not None and self.cache is not None and outcome.status is not CitationStatus.SKIP:
                    self.cache.set(key, outcome)
                results[indices[0]] = outcome
                for duplicate in indices[1:]:
                    results[duplicate] = _copy_result(outcome)
            self.logger.info("Verified window %d/%d (%d citations)", window_no, total_windows, len(window))

        return [r if r is not None else VerificationResult.skip(["no result"]) for r in results]

    async def check_tagged(self, items: Iterable[TaggedCitation]) -> dict[str, VerificationResult]:
        """Verify citations tagged by the page scanner, keyed by their ids."""
        items = list(items)
        results = await self.check_batch([item.citation for item in items])
        return {item.id: result for item, result in zip(items, results)}

    def check_batch_sync(self, inputs: Sequence[CitationInput]) -> list[VerificationResult]:
        """Blocking wrapper around check_batch for synchronous callers."""
        return asyncio.run(self.check_batch(inputs))
