"""Data model for citation verification.

Every value here is created fresh per verification call. Records returned by
the sources are frozen; results are plain dataclasses that serialize to the
JSON shapes exchanged with the page scanner and the presentation layer.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

# ------------- Enums -------------


class CitationStatus(Enum):
    """Final verdict for a citation."""

    VERIFIED = "verified"  # Work exists in a bibliographic source
    RETRACTED = "retracted"  # Work exists but has been retracted or withdrawn
    CONCERN = "concern"  # Work carries an expression of concern
    CORRECTION = "correction"  # Work has a published correction
    FAKE_LIKELY = "fake-likely"  # Identifier confirmed absent, or title does not match at all
    FAKE_PROBABLY = "fake-probably"  # Found by search but year/author very different
    SKIP = "skip"  # No usable evidence either way; never an accusation


class Severity(Enum):
    """Severity of a metadata discrepancy."""

    MINOR = "minor"
    MAJOR = "major"
    CRITICAL = "critical"


class SourceRole(Enum):
    """Which configured source established the result."""

    PRIMARY = "primary"
    SECONDARY = "secondary"
    NONE = "none"


class LookupStatus(Enum):
    """Three-way outcome of a single-identifier lookup."""

    FOUND = "found"
    NOT_FOUND = "not_found"  # Source positively confirms the identifier does not exist
    ERROR = "error"  # Source could not determine existence


class RetractionNature(Enum):
    """Kind of editorial notice attached to a work."""

    RETRACTION = "retraction"
    EXPRESSION_OF_CONCERN = "expression-of-concern"
    CORRECTION = "correction"


class CitationContext(Enum):
    """Where on the page a citation was found."""

    CURRENT_ARTICLE = "current-article"
    REFERENCE = "reference"


# ------------- Records -------------


@dataclass(frozen=True)
class Author:
    """An author as returned by a source."""

    display_name: str
    given: str | None = None
    family: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"name": self.display_name}
        if self.given:
            data["given"] = self.given
        if self.family:
            data["family"] = self.family
        return data


@dataclass(frozen=True)
class WorkRecord:
    """A bibliographic record normalized from a source payload.

    ``year`` is 0 when unknown. ``raw`` keeps the source payload for the
    retraction detector and takes no part in equality.
    """

    doi: str
    title: str
    authors: tuple[Author, ...] = ()
    year: int = 0
    journal: str = ""
    publisher: str | None = None
    type: str | None = None
    volume: str | None = None
    issue: str | None = None
    pages: str | None = None
    raw: dict[str, Any] = field(default_factory=dict, compare=False, repr=False, hash=False)

    @property
    def first_author(self) -> str | None:
        return self.authors[0].display_name if self.authors else None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the ``matchedData`` JSON shape."""
        data: dict[str, Any] = {
            "doi": self.doi,
            "title": self.title,
            "authors": [a.to_dict() for a in self.authors],
            "year": self.year,
            "journal": self.journal,
        }
        for key in ("publisher", "type", "volume", "issue", "pages"):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        return data


@dataclass(frozen=True)
class LookupOutcome:
    """Tagged union: found(work) | not_found | error(message)."""

    status: LookupStatus
    work: WorkRecord | None = None
    message: str | None = None

    @classmethod
    def found(cls, work: WorkRecord) -> LookupOutcome:
        return cls(LookupStatus.FOUND, work=work)

    @classmethod
    def not_found(cls) -> LookupOutcome:
        return cls(LookupStatus.NOT_FOUND)

    @classmethod
    def error(cls, message: str) -> LookupOutcome:
        return cls(LookupStatus.ERROR, message=message)

    @property
    def is_found(self) -> bool:
        return self.status is LookupStatus.FOUND

    @property
    def is_not_found(self) -> bool:
        return self.status is LookupStatus.NOT_FOUND

    @property
    def is_error(self) -> bool:
        return self.status is LookupStatus.ERROR


@dataclass(frozen=True)
class Discrepancy:
    """A mismatch between provided and retrieved metadata for one field."""

    field: str  # title | year | authors | journal | doi | url
    provided: str
    actual: str
    severity: Severity

    def to_dict(self) -> dict[str, Any]:
        return {
            "field": self.field,
            "provided": self.provided,
            "actual": self.actual,
            "severity": self.severity.value,
        }


@dataclass(frozen=True)
class RetractionSignal:
    """Retraction, expression-of-concern or correction notice found on a work."""

    nature: RetractionNature
    date: str | None = None
    reasons: tuple[str, ...] = ()
    notice_url: str | None = None
    source: str | None = None  # e.g. "publisher", "retraction-watch"

    def to_dict(self) -> dict[str, Any]:
        return {
            "nature": self.nature.value,
            "date": self.date,
            "reasons": list(self.reasons),
            "noticeUrl": self.notice_url,
            "source": self.source,
        }


# ------------- Inputs -------------


def _optional_text(value: Any) -> str | None:
    """Coerce a JSON scalar to a string; empty values become None."""
    if value is None or value == "":
        return None
    return str(value)


@dataclass
class CitationInput:
    """Citation metadata as extracted from a document. Every field is optional."""

    doi: str | None = None
    pmid: str | None = None
    url: str | None = None
    title: str | None = None
    authors: list[str] = field(default_factory=list)
    year: int | None = None
    journal: str | None = None

    def has_identifier(self) -> bool:
        """True when at least one identifying field is present."""
        return any((value or "").strip() for value in (self.doi, self.pmid, self.url, self.title))

    @property
    def first_author(self) -> str | None:
        for name in self.authors:
            if name and name.strip():
                return name.strip()
        return None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CitationInput:
        """Create a citation from the collaborator JSON shape."""
        authors = data.get("authors") or []
        if isinstance(authors, str):
            authors = [authors]
        year = data.get("year")
        if year is not None and not isinstance(year, int):
            try:
                year = int(str(year).strip())
            except ValueError:
                year = None
        return cls(
            doi=_optional_text(data.get("doi")),
            pmid=_optional_text(data.get("pmid")),
            url=_optional_text(data.get("url")),
            title=_optional_text(data.get("title")),
            authors=[str(a) for a in authors if a],
            year=year or None,
            journal=_optional_text(data.get("journal")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "doi": self.doi,
            "pmid": self.pmid,
            "url": self.url,
            "title": self.title,
            "authors": list(self.authors),
            "year": self.year,
            "journal": self.journal,
        }


@dataclass
class TaggedCitation:
    """A citation tagged by the page scanner with an opaque id and a context."""

    id: str
    citation: CitationInput
    context: CitationContext = CitationContext.REFERENCE

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TaggedCitation:
        return cls(
            id=str(data["id"]),
            citation=CitationInput.from_dict(data),
            context=CitationContext(data.get("context", CitationContext.REFERENCE.value)),
        )


# ------------- Results -------------

# Statuses that the presentation layer renders as an editorial warning banner
_RETRACTION_STATUSES = {CitationStatus.RETRACTED, CitationStatus.CONCERN}


@dataclass
class VerificationResult:
    """Complete result of verifying a single citation."""

    exists: bool
    confidence: float
    source: SourceRole
    status: CitationStatus
    discrepancies: list[Discrepancy] = field(default_factory=list)
    work: WorkRecord | None = None
    retraction: RetractionSignal | None = None
    source_name: str | None = None
    match_score: float | None = None
    errors: list[str] = field(default_factory=list)

    @classmethod
    def skip(cls, errors: list[str] | None = None) -> VerificationResult:
        """No usable evidence either way."""
        return cls(
            exists=False,
            confidence=0.0,
            source=SourceRole.NONE,
            status=CitationStatus.SKIP,
            errors=list(errors or []),
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the camelCase JSON shape consumed by the presentation layer."""
        data: dict[str, Any] = {
            "exists": self.exists,
            "confidence": self.confidence,
            "source": self.source.value,
            "sourceName": self.source_name,
            "discrepancies": [d.to_dict() for d in self.discrepancies],
            "retraction": self.retraction.to_dict() if self.retraction else None,
            "status": self.status.value,
        }
        if self.work is not None:
            data["matchedData"] = self.work.to_dict()
        if self.match_score is not None:
            data["matchScore"] = self.match_score
        if self.errors:
            data["errors"] = list(self.errors)
        return data

    def to_legacy_dict(self) -> dict[str, Any]:
        """Serialize to the legacy ``{status, isRetracted, retractionDetails, validation}`` shape."""
        details = None
        if self.retraction is not None:
            work = self.work
            details = {
                "title": work.title if work else None,
                "journal": work.journal if work else None,
                "publisher": work.publisher if work else None,
                "authors": [a.display_name for a in work.authors] if work else [],
                "retractionDate": self.retraction.date,
                "retractionNature": self.retraction.nature.value,
                "reason": list(self.retraction.reasons),
                "retractionNoticeUrl": self.retraction.notice_url,
                "source": self.retraction.source,
            }
        return {
            "status": self.status.value,
            "isRetracted": self.status in _RETRACTION_STATUSES,
            "retractionDetails": details,
            "validation": self.to_dict(),
        }
