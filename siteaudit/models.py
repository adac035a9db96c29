"""
Data model for the siteaudit core.

Immutable records exchanged between the crawler/analyzer collaborators and the
core: crawled pages, detected issues, the crawl context and site-wide flags.
Every record round-trips through ``to_dict()`` / ``from_dict()`` so crawl
snapshots can be stored as JSON and replayed through the CLI.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Dict, Iterable, Optional, Tuple


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class IssueCategory(str, Enum):
    TECHNICAL = "Technical"
    ON_PAGE = "On-page"
    CONTENT = "Content"
    ACCESSIBILITY = "Accessibility"
    PERFORMANCE = "Performance"

    @classmethod
    def parse(cls, value: Any) -> "IssueCategory":
        """Accept an enum member or its value, case-insensitively."""
        if isinstance(value, cls):
            return value
        text = str(value).strip().lower().replace("_", "-").replace(" ", "-")
        if text in ("onpage", "on-page"):
            return cls.ON_PAGE
        for member in cls:
            if member.value.lower() == text:
                return member
        raise ValueError(f"Unknown issue category: {value!r}")


class Severity(str, Enum):
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    @classmethod
    def parse(cls, value: Any) -> "Severity":
        if isinstance(value, cls):
            return value
        text = str(value).strip().lower()
        for member in cls:
            if member.value.lower() == text:
                return member
        raise ValueError(f"Unknown severity: {value!r}")


_SEVERITY_RANK = {Severity.HIGH: 3, Severity.MEDIUM: 2, Severity.LOW: 1}


class DuplicateType(str, Enum):
    WWW = "www"
    TRAILING_SLASH = "trailing-slash"
    PROTOCOL = "protocol"
    QUERY_PARAMS = "query-params"
    CASE = "case"
    CANONICAL_CONFLICT = "canonical-conflict"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _unique(values: Iterable[str]) -> Tuple[str, ...]:
    """Deduplicate while keeping first-seen order."""
    seen: Dict[str, None] = {}
    for value in values:
        if value not in seen:
            seen[value] = None
    return tuple(seen)


def _known_fields(cls: type, data: Dict[str, Any]) -> Dict[str, Any]:
    known = cls.__dataclass_fields__  # type: ignore[attr-defined]
    return {k: v for k, v in data.items() if k in known}


# ---------------------------------------------------------------------------
# Page records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PageSpeedData:
    """Core Web Vitals for one page, in milliseconds (CLS is unitless)."""

    lcp: Optional[float] = None
    fcp: Optional[float] = None
    cls: Optional[float] = None
    ttfb: Optional[float] = None
    tbt: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PageSpeedData":
        return cls(**_known_fields(cls, data))


@dataclass(frozen=True)
class CrawledPage:
    """One URL observed during a crawl.

    ``outbound_internal_links`` is ``None`` when the extractor only reported
    ``internal_link_count``; an empty tuple means the page has no links.
    ``contextual_links`` is the subset of links found in body copy rather
    than navigation.
    """

    url: str
    status_code: int = 200
    word_count: int = 0
    title: str = ""
    meta_description: str = ""
    canonical_declared: Optional[str] = None
    outbound_internal_links: Optional[Tuple[str, ...]] = None
    contextual_links: Tuple[str, ...] = ()
    internal_link_count: int = 0
    h1_count: int = 0
    h2_count: int = 0
    image_count: int = 0
    missing_alt_count: int = 0
    has_viewport: bool = True
    page_speed: Optional[PageSpeedData] = None

    def __post_init__(self) -> None:
        if self.outbound_internal_links is not None:
            object.__setattr__(
                self, "outbound_internal_links", tuple(self.outbound_internal_links)
            )
        object.__setattr__(self, "contextual_links", tuple(self.contextual_links))

    @property
    def is_fetched(self) -> bool:
        return self.status_code > 0

    @property
    def is_error(self) -> bool:
        return self.status_code >= 400 or self.status_code == 0

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        if self.outbound_internal_links is not None:
            data["outbound_internal_links"] = list(self.outbound_internal_links)
        data["contextual_links"] = list(self.contextual_links)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CrawledPage":
        kwargs = _known_fields(cls, data)
        speed = kwargs.get("page_speed")
        if isinstance(speed, dict):
            kwargs["page_speed"] = PageSpeedData.from_dict(speed)
        links = kwargs.get("outbound_internal_links")
        if links is not None:
            kwargs["outbound_internal_links"] = tuple(links)
        if "contextual_links" in kwargs:
            kwargs["contextual_links"] = tuple(kwargs["contextual_links"] or ())
        return cls(**kwargs)


@dataclass(frozen=True)
class CrawlContext:
    """Preferred host/protocol established from the first fetched URL."""

    preferred_hostname: str
    preferred_protocol: str = "https"
    root_domain: str = ""

    @property
    def prefers_www(self) -> bool:
        return self.preferred_hostname.startswith("www.")

    @classmethod
    def from_url(cls, url: str) -> "CrawlContext":
        """Derive the context from a fetched URL.

        Raises ``InvalidUrl`` if the URL cannot be parsed even after the
        ``https://`` retry.
        """
        from .url_canonicalizer import root_domain, split_url

        parts = split_url(url)
        hostname = parts.hostname or ""
        return cls(
            preferred_hostname=hostname,
            preferred_protocol=parts.scheme.lower(),
            root_domain=root_domain(hostname),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CrawlContext":
        return cls(**_known_fields(cls, data))


@dataclass(frozen=True)
class SiteWideSignals:
    robots_txt_exists: bool = True
    sitemap_exists: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SiteWideSignals":
        return cls(**_known_fields(cls, data))


# ---------------------------------------------------------------------------
# Issues
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Issue:
    """One detected defect, as emitted by an analyzer.

    ``issue_type`` is an optional machine tag (``security-headers``,
    ``thin-content``...) that the scoring engine prefers over the message
    text when bucketing deductions.
    """

    category: IssueCategory
    severity: Severity
    message: str
    details: str = ""
    affected_pages: Tuple[str, ...] = ()
    fix_instructions: Optional[str] = None
    issue_type: str = ""
    priority: Optional[int] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "category", IssueCategory.parse(self.category))
        object.__setattr__(self, "severity", Severity.parse(self.severity))
        object.__setattr__(self, "affected_pages", _unique(self.affected_pages))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category.value,
            "severity": self.severity.value,
            "message": self.message,
            "details": self.details,
            "affected_pages": list(self.affected_pages),
            "fix_instructions": self.fix_instructions,
            "issue_type": self.issue_type,
            "priority": self.priority,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Issue":
        kwargs = _known_fields(cls, data)
        kwargs["affected_pages"] = tuple(kwargs.get("affected_pages") or ())
        return cls(**kwargs)


@dataclass(frozen=True)
class CategoryScores:
    """Five category scores in [0, 100] plus the overall score in [5, 95]."""

    technical: float
    on_page: float
    content: float
    accessibility: float
    performance: float
    overall_score: float

    def for_category(self, category: IssueCategory) -> float:
        return {
            IssueCategory.TECHNICAL: self.technical,
            IssueCategory.ON_PAGE: self.on_page,
            IssueCategory.CONTENT: self.content,
            IssueCategory.ACCESSIBILITY: self.accessibility,
            IssueCategory.PERFORMANCE: self.performance,
        }[category]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


__all__ = [
    "CategoryScores",
    "CrawlContext",
    "CrawledPage",
    "DuplicateType",
    "Issue",
    "IssueCategory",
    "PageSpeedData",
    "Severity",
    "SiteWideSignals",
]
