#!/usr/bin/env python3
"""
Citation verifier: decide whether a scholarly citation refers to a real,
non-retracted work.

Checks DOIs against a primary source (Crossref) with fallback to a secondary
source (OpenAlex). Citations without a DOI are resolved through PubMed ids
(Europe PMC), identifiers embedded in URLs, or a title/author/year search.

Verdicts:
- verified:      work exists in a bibliographic source
- retracted:     work exists but was retracted or withdrawn
- concern:       work carries an expression of concern
- correction:    work has a published correction
- fake-likely:   identifier confirmed absent, or search match has a different title
- fake-probably: search match has a very different year or first author
- skip:          no source could establish existence either way

A verdict of fake-likely needs at least one source positively reporting the
DOI as absent. Network failures alone never produce more than skip.

Usage:
    citation-verify citations.json
    citation-verify refs.bib --report report.json --strict
"""

from __future__ import annotations

import argparse
import asyncio
import datetime
import json
import logging
import os
import sys
from collections.abc import Iterable
from typing import Any

import bibtexparser

from citation_verifier.batch import BatchCoordinator, ResultCache
from citation_verifier.config import BatchConfig, SourceConfig, VerifierConfig
from citation_verifier.matching import compare_metadata, find_best_match, score_confidence
from citation_verifier.models import (
    CitationInput,
    CitationStatus,
    Discrepancy,
    LookupOutcome,
    RetractionNature,
    RetractionSignal,
    Severity,
    SourceRole,
    VerificationResult,
    WorkRecord,
)
from citation_verifier.retraction import detect_for_work
from citation_verifier.sources import CrossrefSource, EuropePMCResolver, OpenAlexSource, SourceClient
from citation_verifier.utils import (
    extract_doi_from_text,
    extract_pmid_from_text,
    latex_to_plain,
    normalize_doi,
    normalize_pmid,
    split_authors_bibtex,
)

__all__ = [
    "CitationVerifierError",
    "InputError",
    "RETRACTION_STATUS",
    "PROBLEM_STATUSES",
    "status_for_found",
    "classify_fuzzy_match",
    "CitationVerifier",
    "load_citations",
    "generate_summary",
    "generate_json_report",
    "generate_jsonl",
    "build_parser",
    "main",
]


# ------------- Errors -------------


class CitationVerifierError(Exception):
    """Base class for citation verifier errors."""


class InputError(CitationVerifierError):
    """An input file could not be read or has an unsupported format."""


# ------------- Status Classifier -------------

RETRACTION_STATUS: dict[RetractionNature, CitationStatus] = {
    RetractionNature.RETRACTION: CitationStatus.RETRACTED,
    RetractionNature.EXPRESSION_OF_CONCERN: CitationStatus.CONCERN,
    RetractionNature.CORRECTION: CitationStatus.CORRECTION,
}

PROBLEM_STATUSES = (CitationStatus.FAKE_LIKELY, CitationStatus.FAKE_PROBABLY)


def status_for_found(retraction: RetractionSignal | None) -> CitationStatus:
    """Status of a DOI-confirmed work. Metadata discrepancies never downgrade it."""
    if retraction is None:
        return CitationStatus.VERIFIED
    return RETRACTION_STATUS[retraction.nature]


def classify_fuzzy_match(
    confidence: float,
    discrepancies: Iterable[Discrepancy],
    config: VerifierConfig | None = None,
) -> CitationStatus:
    """Status of a citation matched through title/author/year search.

    Search hits are weaker evidence than an exact DOI, so discrepancies count.
    """
    cfg = config or VerifierConfig()
    discrepancies = list(discrepancies)
    serious = any(d.severity in (Severity.CRITICAL, Severity.MAJOR) for d in discrepancies)

    if confidence >= cfg.fuzzy_verified_confidence and not serious:
        return CitationStatus.VERIFIED
    if any(d.field == "title" and d.severity is Severity.CRITICAL for d in discrepancies):
        return CitationStatus.FAKE_LIKELY
    if any(d.field in ("year", "authors") and d.severity is Severity.MAJOR for d in discrepancies):
        return CitationStatus.FAKE_PROBABLY
    if confidence >= cfg.fuzzy_fallback_confidence:
        return CitationStatus.VERIFIED
    return CitationStatus.SKIP


def _describe(name: str, outcome: LookupOutcome) -> str:
    if outcome.is_error:
        return f"{name}: error ({outcome.message})"
    return f"{name}: {outcome.status.value}"


# ------------- Lookup Orchestrator -------------


class CitationVerifier:
    """Verifies citations against a primary and a secondary bibliographic source."""

    def __init__(
        self,
        primary: SourceClient,
        secondary: SourceClient,
        config: VerifierConfig | None = None,
        pmid_resolver: EuropePMCResolver | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.primary = primary
        self.secondary = secondary
        self.config = config or VerifierConfig()
        self.pmid_resolver = pmid_resolver
        self.logger = logger or logging.getLogger(__name__)

    async def verify(self, citation: CitationInput) -> VerificationResult:
        """Route a citation to the strongest identifier it carries.

        DOI, then PubMed id, then an identifier embedded in the URL, then a
        title search. Identifiers that cannot be turned into a DOI fall through
        to the title search when a title is present.
        """
        doi = normalize_doi(citation.doi)
        if doi:
            return await self.verify_doi(doi, citation)

        errors: list[str] = []
        pmid = normalize_pmid(citation.pmid)
        if not pmid and citation.url:
            url_doi = extract_doi_from_text(citation.url)
            if url_doi:
                self.logger.debug("Extracted DOI %s from URL %s", url_doi, citation.url)
                return await self.verify_doi(url_doi, citation)
            pmid = extract_pmid_from_text(citation.url)

        if pmid:
            resolved = await self._resolve_pmid(pmid)
            if resolved:
                self.logger.debug("Resolved PMID %s to DOI %s", pmid, resolved)
                return await self.verify_doi(resolved, citation)
            errors.append(f"PMID {pmid} could not be resolved to a DOI")

        if citation.title and citation.title.strip():
            result = await self.verify_by_metadata(citation)
            result.errors = errors + result.errors
            return result

        if not errors:
            errors.append("citation has no usable identifier")
        return VerificationResult.skip(errors)

    async def _resolve_pmid(self, pmid: str) -> str | None:
        if self.pmid_resolver is None:
            self.logger.debug("No PMID resolver configured; cannot resolve PMID %s", pmid)
            return None
        return await self.pmid_resolver.resolve_pmid(pmid)

    async def verify_doi(self, doi: str, citation: CitationInput | None = None) -> VerificationResult:
        """Check a DOI with primary-then-secondary fallback.

        The secondary source is only consulted once the primary has failed to
        find the DOI. A DOI found anywhere is conclusive; absence needs at least
        one source to confirm it, and two indeterminate answers give skip.
        """
        normalized = normalize_doi(doi)
        if not normalized:
            return VerificationResult.skip(["no DOI to look up"])
        citation = citation or CitationInput(doi=normalized)

        primary = await self.primary.get_work(normalized)
        self.logger.debug("DOI %s %s", normalized, _describe(self.primary.name, primary))
        if primary.is_found:
            return self._found(citation, primary.work, SourceRole.PRIMARY, self.primary.name)

        secondary = await self.secondary.get_work(normalized)
        self.logger.debug("DOI %s %s", normalized, _describe(self.secondary.name, secondary))
        if secondary.is_found:
            errors = [primary.message] if primary.is_error and primary.message else []
            result = self._found(citation, secondary.work, SourceRole.SECONDARY, self.secondary.name)
            result.errors = errors
            return result

        errors = [o.message for o in (primary, secondary) if o.is_error and o.message]
        if primary.is_error and secondary.is_error:
            self.logger.debug("DOI %s: no source could determine existence", normalized)
            return VerificationResult.skip(errors)

        actual = "; ".join((_describe(self.primary.name, primary), _describe(self.secondary.name, secondary)))
        self.logger.warning("DOI %s not found (%s)", normalized, actual)
        return VerificationResult(
            exists=False,
            confidence=0.0,
            source=SourceRole.NONE,
            status=CitationStatus.FAKE_LIKELY,
            discrepancies=[Discrepancy("doi", normalized, actual, Severity.CRITICAL)],
            errors=errors,
        )

    def _found(
        self, citation: CitationInput, work: WorkRecord, role: SourceRole, source_name: str
    ) -> VerificationResult:
        retraction = detect_for_work(work)
        if retraction is not None:
            self.logger.debug("DOI %s carries a %s notice", work.doi, retraction.nature.value)
        return VerificationResult(
            exists=True,
            confidence=1.0,
            source=role,
            status=status_for_found(retraction),
            discrepancies=compare_metadata(citation, work, self.config),
            work=work,
            retraction=retraction,
            source_name=source_name,
        )

    async def _search(self, citation: CitationInput) -> tuple[SourceClient | None, list[WorkRecord]]:
        """Search the secondary source, then the primary if the secondary has nothing."""
        for client in (self.secondary, self.primary):
            candidates = await client.search_by_title_author_year(
                citation.title or "", citation.first_author, citation.year
            )
            self.logger.debug("%s search returned %d candidates", client.name, len(candidates))
            if candidates:
                return client, candidates
        return None, []

    async def verify_by_metadata(self, citation: CitationInput) -> VerificationResult:
        """Resolve a DOI-less citation through title/author/year search."""
        if not citation.title or not citation.title.strip():
            return VerificationResult.skip(["citation has no title to search for"])

        client, candidates = await self._search(citation)
        best = find_best_match(citation, candidates)
        if client is None or best is None:
            return VerificationResult.skip(["no search candidates found"])

        work, score = best
        if score <= self.config.match_threshold:
            self.logger.debug("Best candidate %r scored %.2f, below the match gate", work.title, score)
            return VerificationResult.skip([f"best search candidate scored {score:.2f}"])

        discrepancies = compare_metadata(citation, work, self.config)
        confidence = score_confidence(discrepancies)
        status = classify_fuzzy_match(confidence, discrepancies, self.config)

        retraction = detect_for_work(work)
        if status is CitationStatus.VERIFIED and retraction is not None:
            status = status_for_found(retraction)
        if status is CitationStatus.FAKE_LIKELY:
            self.logger.warning("Search match for %r has a different title: %r", citation.title, work.title)

        role = SourceRole.SECONDARY if client is self.secondary else SourceRole.PRIMARY
        return VerificationResult(
            exists=status not in (*PROBLEM_STATUSES, CitationStatus.SKIP),
            confidence=confidence,
            source=role,
            status=status,
            discrepancies=discrepancies,
            work=work,
            retraction=retraction,
            source_name=client.name,
            match_score=score,
        )


# ------------- Input Loading -------------


def _citation_from_bib_entry(entry: dict[str, Any]) -> CitationInput:
    year_raw = (entry.get("year") or "").strip()
    return CitationInput(
        doi=entry.get("doi") or None,
        pmid=entry.get("pmid") or None,
        url=entry.get("url") or None,
        title=latex_to_plain(entry["title"]) if entry.get("title") else None,
        authors=[latex_to_plain(a) for a in split_authors_bibtex(entry.get("author", ""))],
        year=int(year_raw) if year_raw.isdigit() else None,
        journal=latex_to_plain(entry.get("journal") or entry.get("booktitle") or "") or None,
    )


def _load_json(path: str, text: str) -> list[CitationInput]:
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise InputError(f"{path}: invalid JSON: {e}") from e
    if isinstance(data, dict):
        data = data.get("items")
    if not isinstance(data, list):
        raise InputError(f"{path}: expected a list of citations or an object with 'items'")
    return [CitationInput.from_dict(item) for item in data if isinstance(item, dict)]


def _load_jsonl(path: str, text: str) -> list[CitationInput]:
    citations = []
    for lineno, line in enumerate(text.splitlines(), 1):
        if not line.strip():
            continue
        try:
            item = json.loads(line)
        except json.JSONDecodeError as e:
            raise InputError(f"{path}:{lineno}: invalid JSON: {e}") from e
        if isinstance(item, dict):
            citations.append(CitationInput.from_dict(item))
    return citations


def load_citations(path: str) -> list[CitationInput]:
    """Read citations from a .json, .jsonl or .bib file."""
    ext = os.path.splitext(path)[1].lower()
    if ext not in (".json", ".jsonl", ".bib"):
        raise InputError(f"{path}: unsupported file type {ext or '(none)'}")
    try:
        with open(path, encoding="utf-8") as f:
            text = f.read()
    except OSError as e:
        raise InputError(f"{path}: {e.strerror or e}") from e

    if ext == ".json":
        return _load_json(path, text)
    if ext == ".jsonl":
        return _load_jsonl(path, text)
    try:
        db = bibtexparser.loads(text)
    except Exception as e:
        raise InputError(f"{path}: failed to parse BibTeX: {e}") from e
    return [_citation_from_bib_entry(entry) for entry in db.entries]


# ------------- Reports -------------


def generate_summary(results: list[VerificationResult]) -> dict[str, Any]:
    """Generate summary statistics from results."""
    counts = {s.value: 0 for s in CitationStatus}
    for r in results:
        counts[r.status.value] += 1

    field_discrepancies: dict[str, int] = {}
    for r in results:
        for d in r.discrepancies:
            field_discrepancies[d.field] = field_discrepancies.get(d.field, 0) + 1

    checked = len(results) - counts[CitationStatus.SKIP.value]
    return {
        "total": len(results),
        "status_counts": counts,
        "field_discrepancy_counts": field_discrepancies,
        "verified_rate": counts[CitationStatus.VERIFIED.value] / checked if checked else 0,
        "problematic_count": sum(counts[s.value] for s in PROBLEM_STATUSES),
        "retraction_count": sum(counts[s.value] for s in RETRACTION_STATUS.values()),
    }


def generate_json_report(
    citations: list[CitationInput], results: list[VerificationResult], legacy: bool = False
) -> dict[str, Any]:
    """Generate full JSON report."""
    entries = []
    for index, (citation, result) in enumerate(zip(citations, results)):
        entries.append(
            {
                "index": index,
                "input": citation.to_dict(),
                "result": result.to_legacy_dict() if legacy else result.to_dict(),
            }
        )
    summary = generate_summary(results)
    summary["timestamp"] = datetime.datetime.now().isoformat()
    return {"summary": summary, "entries": entries}


def generate_jsonl(citations: list[CitationInput], results: list[VerificationResult]) -> list[str]:
    """Generate JSONL format (one JSON object per line)."""
    lines = []
    for index, (citation, result) in enumerate(zip(citations, results)):
        lines.append(
            json.dumps(
                {
                    "index": index,
                    "doi": citation.doi,
                    "title": citation.title,
                    "status": result.status.value,
                    "confidence": result.confidence,
                    "source": result.source_name,
                    "discrepant_fields": [d.field for d in result.discrepancies],
                    "errors": result.errors,
                },
                ensure_ascii=False,
            )
        )
    return lines


# ------------- CLI -------------


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    p = argparse.ArgumentParser(
        description="Verify scholarly citations against Crossref and OpenAlex",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Exit codes:
  0  all citations checked
  1  input files could not be read
  4  --strict and at least one fake-likely or fake-probably citation
""",
    )
    p.add_argument("files", nargs="+", help="Citation files (.json, .jsonl or .bib)")
    p.add_argument("--report", "-r", metavar="FILE", help="Write JSON report to FILE")
    p.add_argument("--jsonl", metavar="FILE", help="Write JSONL report to FILE")
    p.add_argument(
        "--legacy",
        action="store_true",
        help="Use the legacy {status, isRetracted, retractionDetails, validation} result shape in --report",
    )
    p.add_argument(
        "--strict",
        action="store_true",
        help="Exit with code 4 if any citation is fake-likely or fake-probably",
    )
    p.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")

    api_opts = p.add_argument_group("API options")
    api_opts.add_argument(
        "--email",
        help="Contact email for the sources' polite pools (default: from CITATION_VERIFIER_EMAIL)",
    )
    api_opts.add_argument("--timeout", type=float, help="Per-request timeout in seconds (default: 20)")
    api_opts.add_argument(
        "--concurrency",
        type=int,
        default=BatchConfig.concurrency,
        help="Citations verified concurrently per window (default: %(default)s)",
    )
    api_opts.add_argument("--no-cache", action="store_true", help="Disable the result cache")
    return p


def _source_config(base: SourceConfig, args: argparse.Namespace) -> SourceConfig:
    if args.email:
        base.contact_email = args.email
    if args.timeout:
        base.timeout = args.timeout
    return base


async def _run(
    citations: list[CitationInput], args: argparse.Namespace, logger: logging.Logger
) -> list[VerificationResult]:
    primary = CrossrefSource(_source_config(SourceConfig.crossref_from_env(), args), logger=logger)
    secondary = OpenAlexSource(_source_config(SourceConfig.openalex_from_env(), args), logger=logger)
    resolver = EuropePMCResolver(_source_config(SourceConfig.europepmc_from_env(), args), logger=logger)
    verifier = CitationVerifier(primary, secondary, pmid_resolver=resolver, logger=logger)

    batch_config = BatchConfig(concurrency=args.concurrency, use_cache=not args.no_cache)
    cache = (
        ResultCache(batch_config.cache_ttl_seconds, batch_config.cache_max_entries) if batch_config.use_cache else None
    )
    coordinator = BatchCoordinator(verifier, cache=cache, concurrency=batch_config.concurrency, logger=logger)
    try:
        return await coordinator.check_batch(citations)
    finally:
        await asyncio.gather(primary.close(), secondary.close(), resolver.close())


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(level=level, format="%(levelname)s: %(message)s")
    logger = logging.getLogger("citation_verifier")

    citations: list[CitationInput] = []
    for path in args.files:
        try:
            loaded = load_citations(path)
        except InputError as e:
            logger.error("%s", e)
            return 1
        logger.info("Loaded %d citations from %s", len(loaded), path)
        citations.extend(loaded)

    if not citations:
        logger.error("No citations found in input files")
        return 1

    logger.info("Total citations to verify: %d", len(citations))
    results = asyncio.run(_run(citations, args, logger))
    summary = generate_summary(results)

    logger.info("=" * 60)
    logger.info("SUMMARY: %d citations checked", summary["total"])
    logger.info("By status:")
    for status, count in summary["status_counts"].items():
        if count > 0:
            logger.info("  %s: %d", status.upper(), count)
    logger.info("Verified rate: %.1f%%", summary["verified_rate"] * 100)
    if summary["retraction_count"] > 0:
        logger.warning("Citations with editorial notices: %d", summary["retraction_count"])
    if summary["problematic_count"] > 0:
        logger.warning("Problematic citations: %d", summary["problematic_count"])

    if args.report:
        with open(args.report, "w", encoding="utf-8") as f:
            json.dump(generate_json_report(citations, results, legacy=args.legacy), f, indent=2, ensure_ascii=False)
        logger.info("JSON report written to %s", args.report)

    if args.jsonl:
        with open(args.jsonl, "w", encoding="utf-8") as f:
            for line in generate_jsonl(citations, results):
                f.write(line + "\n")
        logger.info("JSONL report written to %s (%d entries)", args.jsonl, len(results))

    if args.strict and summary["problematic_count"] > 0:
        logger.warning("Strict mode: %d fake-likely or fake-probably citations found", summary["problematic_count"])
        return 4

    return 0


if __name__ == "__main__":
    sys.exit(main())
