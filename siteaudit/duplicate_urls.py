"""
Duplicate-URL Auditor — SiteAudit Core
======================================

Finds observed page URLs that are syntactic variants of each other
(www/non-www, trailing slash, http/https, letter case, query strings),
recommends one representative per group, and checks author-declared
canonical tags against those recommendations.

Each page URL expands into a fixed set of variants (slash added/removed,
forced https, www added/removed, query stripped, lower-cased). Pages whose
canonicalized variants intersect are merged into one group, so every URL a
group reports was actually observed during the crawl.

Usage:
    from siteaudit.duplicate_urls import analyze_duplicates, generate_duplicate_url_issues

    analysis = analyze_duplicates(pages, context)
    for group in analysis.groups:
        print(group.type.value, group.preferred, group.duplicates)
    issues = generate_duplicate_url_issues(analysis)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple
from urllib.parse import urljoin, urlsplit, urlunsplit

from .config import DuplicateConfig
from .errors import InvalidUrl
from .models import CrawlContext, CrawledPage, DuplicateType, Issue, IssueCategory, Severity
from .url_canonicalizer import UrlCanonicalizer, split_url

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logger = logging.getLogger("duplicate_urls")
logger.setLevel(logging.DEBUG)

if not logger.handlers:
    _handler = logging.StreamHandler()
    _handler.setFormatter(
        logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    logger.addHandler(_handler)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Highest priority first.
TYPE_PRIORITY: Tuple[DuplicateType, ...] = (
    DuplicateType.WWW,
    DuplicateType.TRAILING_SLASH,
    DuplicateType.PROTOCOL,
    DuplicateType.CASE,
    DuplicateType.QUERY_PARAMS,
)

_RECOMMENDATIONS: Dict[DuplicateType, str] = {
    DuplicateType.WWW: "Consolidate www and non-www versions. Use {url} as canonical and redirect others.",
    DuplicateType.TRAILING_SLASH: "Choose one URL format (with or without trailing slash). Use {url} as canonical.",
    DuplicateType.PROTOCOL: "Ensure all URLs use HTTPS. Redirect HTTP to HTTPS version: {url}",
    DuplicateType.QUERY_PARAMS: "Remove or consolidate query parameters. Use {url} as canonical.",
    DuplicateType.CASE: "URLs are case-sensitive. Standardize to lowercase: {url}",
    DuplicateType.CANONICAL_CONFLICT: "Canonical tags conflict. Use {url} as the preferred URL.",
}


# ===================================================================
# RESULT TYPES
# ===================================================================


@dataclass(frozen=True)
class DuplicateGroup:
    canonical_form: str
    preferred: str
    duplicates: Tuple[str, ...]
    type: DuplicateType
    recommendation: str

    @property
    def urls(self) -> Tuple[str, ...]:
        return (self.preferred,) + self.duplicates

    def to_dict(self) -> Dict[str, Any]:
        return {
            "canonical_form": self.canonical_form,
            "preferred": self.preferred,
            "duplicates": list(self.duplicates),
            "type": self.type.value,
            "recommendation": self.recommendation,
        }


@dataclass(frozen=True)
class CanonicalConflict:
    """A page whose declared canonical disagrees with the recommended URL."""

    page_url: str
    declared: str
    expected: str
    related: bool
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "page_url": self.page_url,
            "declared": self.declared,
            "expected": self.expected,
            "related": self.related,
            "reason": self.reason,
        }


@dataclass(frozen=True)
class DuplicateUrlAnalysis:
    groups: Tuple[DuplicateGroup, ...] = ()
    total_duplicate_count: int = 0
    canonical_conflict_count: int = 0
    related_canonical_conflict_count: int = 0
    recommended_canonical_of: Dict[str, str] = field(default_factory=dict)
    canonical_conflicts: Tuple[CanonicalConflict, ...] = ()
    invalid_url_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "groups": [g.to_dict() for g in self.groups],
            "total_duplicate_count": self.total_duplicate_count,
            "canonical_conflict_count": self.canonical_conflict_count,
            "related_canonical_conflict_count": self.related_canonical_conflict_count,
            "recommended_canonical_of": dict(self.recommended_canonical_of),
            "canonical_conflicts": [c.to_dict() for c in self.canonical_conflicts],
            "invalid_url_count": self.invalid_url_count,
        }


# ---------------------------------------------------------------------------
# Variants
# ---------------------------------------------------------------------------


def url_variants(url: str) -> List[str]:
    """Syntactic variants of ``url`` that commonly resolve to the same page."""
    parts = urlsplit(url.strip())
    host = parts.netloc
    path = parts.path or "/"
    variants = [url.strip()]

    if path != "/" and path.endswith("/"):
        variants.append(urlunsplit((parts.scheme, host, path.rstrip("/") or "/", parts.query, "")))
    elif not path.endswith("/"):
        variants.append(urlunsplit((parts.scheme, host, path + "/", parts.query, "")))

    variants.append(urlunsplit(("https", host, path, parts.query, "")))

    if host.lower().startswith("www."):
        variants.append(urlunsplit((parts.scheme, host[4:], path, parts.query, "")))
    else:
        variants.append(urlunsplit((parts.scheme, "www." + host, path, parts.query, "")))

    if parts.query:
        variants.append(urlunsplit((parts.scheme, host, path, "", "")))

    variants.append(url.strip().lower())
    return variants


def _classify(urls: Sequence[str]) -> DuplicateType:
    parsed = [urlsplit(u) for u in urls]
    found: Set[DuplicateType] = set()

    if len({(p.hostname or "").startswith("www.") for p in parsed}) > 1:
        found.add(DuplicateType.WWW)
    if len({p.path.endswith("/") for p in parsed}) > 1:
        found.add(DuplicateType.TRAILING_SLASH)
    if len({p.scheme.lower() for p in parsed}) > 1:
        found.add(DuplicateType.PROTOCOL)
    paths = {p.path.rstrip("/") for p in parsed}
    if len(paths) > len({path.lower() for path in paths}):
        found.add(DuplicateType.CASE)
    hosts = {p.netloc for p in parsed}
    if len(hosts) > len({host.lower() for host in hosts}):
        found.add(DuplicateType.CASE)

    for dup_type in TYPE_PRIORITY:
        if dup_type in found:
            return dup_type
    return DuplicateType.QUERY_PARAMS


def duplicate_recommendation(dup_type: DuplicateType, preferred: str) -> str:
    return _RECOMMENDATIONS[dup_type].format(url=preferred)


class _UnionFind:
    def __init__(self, size: int) -> None:
        self.parent = list(range(size))

    def find(self, item: int) -> int:
        root = item
        while self.parent[root] != root:
            root = self.parent[root]
        while self.parent[item] != root:
            self.parent[item], item = root, self.parent[item]
        return root

    def union(self, a: int, b: int) -> None:
        root_a, root_b = self.find(a), self.find(b)
        if root_a != root_b:
            # Lower index wins so group order follows crawl order.
            if root_b < root_a:
                root_a, root_b = root_b, root_a
            self.parent[root_b] = root_a


# ===================================================================
# AUDITOR
# ===================================================================


class DuplicateUrlAuditor:
    """Groups duplicate URL variants and checks declared canonicals.

    Parameters
    ----------
    config:
        Thresholds for the related-category canonical heuristic.
    canonicalizer:
        Shared canonicalizer; a default one is created when omitted.
    """

    def __init__(
        self,
        config: Optional[DuplicateConfig] = None,
        canonicalizer: Optional[UrlCanonicalizer] = None,
    ) -> None:
        self.config = config or DuplicateConfig()
        self.canonicalizer = canonicalizer or UrlCanonicalizer()

    def _forms(self, url: str) -> Set[str]:
        forms: Set[str] = set()
        for variant in url_variants(url):
            try:
                forms.add(self.canonicalizer.canonicalize(variant))
            except InvalidUrl:
                continue
        return forms

    def analyze(
        self,
        pages: Iterable[CrawledPage],
        context: Optional[CrawlContext] = None,
    ) -> DuplicateUrlAnalysis:
        """Group variant URLs and classify canonical-tag conflicts."""
        page_list = list(pages)
        urls: List[str] = []
        url_index: Dict[str, int] = {}
        invalid = 0

        for page in page_list:
            raw = page.url.strip()
            if raw in url_index:
                continue
            try:
                literal = split_url(raw).geturl()
            except InvalidUrl as exc:
                logger.warning("Excluding unparseable URL from duplicate analysis: %s", exc)
                invalid += 1
                continue
            url_index[raw] = len(urls)
            urls.append(literal)

        uf = _UnionFind(len(urls))
        owner_of_form: Dict[str, int] = {}
        for idx, url in enumerate(urls):
            for form in self._forms(url):
                if form in owner_of_form:
                    uf.union(owner_of_form[form], idx)
                else:
                    owner_of_form[form] = idx

        members: Dict[int, List[str]] = {}
        for idx, url in enumerate(urls):
            members.setdefault(uf.find(idx), []).append(url)

        groups: List[DuplicateGroup] = []
        recommended: Dict[str, str] = {}
        for root in sorted(members):
            literals = list(dict.fromkeys(members[root]))
            if len(literals) < 2:
                continue
            preferred = self.canonicalizer.preferred_url(literals, context)
            dup_type = _classify(literals)
            group = DuplicateGroup(
                canonical_form=self.canonicalizer.canonicalize(preferred, context),
                preferred=preferred,
                duplicates=tuple(u for u in literals if u != preferred),
                type=dup_type,
                recommendation=duplicate_recommendation(dup_type, preferred),
            )
            groups.append(group)
            for literal in literals:
                recommended[literal] = preferred

        conflicts = self._canonical_conflicts(page_list, url_index, urls, recommended, context)
        real = sum(1 for c in conflicts if not c.related)

        analysis = DuplicateUrlAnalysis(
            groups=tuple(groups),
            total_duplicate_count=sum(len(g.duplicates) for g in groups),
            canonical_conflict_count=real,
            related_canonical_conflict_count=len(conflicts) - real,
            recommended_canonical_of=recommended,
            canonical_conflicts=tuple(conflicts),
            invalid_url_count=invalid,
        )
        logger.info(
            "Duplicate analysis: %d groups, %d duplicate URLs, %d canonical conflicts "
            "(%d related)",
            len(groups), analysis.total_duplicate_count, real, len(conflicts) - real,
        )
        return analysis

    # -------------------------------------------------------------------
    # Canonical tags
    # -------------------------------------------------------------------

    def _canonical_conflicts(
        self,
        pages: Sequence[CrawledPage],
        url_index: Dict[str, int],
        urls: Sequence[str],
        recommended: Dict[str, str],
        context: Optional[CrawlContext],
    ) -> List[CanonicalConflict]:
        conflicts: List[CanonicalConflict] = []
        seen: Set[str] = set()
        for page in pages:
            declared_raw = (page.canonical_declared or "").strip()
            raw = page.url.strip()
            if not declared_raw or raw not in url_index or raw in seen:
                continue
            seen.add(raw)
            page_url = urls[url_index[raw]]
            expected = recommended.get(page_url, page_url)
            conflict = self.check_canonical(page_url, declared_raw, expected, context)
            if conflict is not None:
                conflicts.append(conflict)
        return conflicts

    def check_canonical(
        self,
        page_url: str,
        declared: str,
        expected: str,
        context: Optional[CrawlContext] = None,
    ) -> Optional[CanonicalConflict]:
        """Compare a declared canonical with the expected preferred URL.

        Returns ``None`` when they agree. Otherwise the conflict is
        ``related`` when the declared URL looks like an intentional parent
        or sibling category on the same root domain.
        """
        c = self.canonicalizer
        try:
            resolved = urljoin(page_url, declared)
            declared_form = c.canonicalize_lenient(resolved, context)
        except (InvalidUrl, ValueError):
            return CanonicalConflict(page_url, declared, expected, False, "unparseable canonical")

        if declared_form == c.canonicalize_lenient(expected, context):
            return None

        declared_parts = split_url(declared_form)
        page_parts = split_url(page_url)
        if c.root_domain(declared_parts.hostname or "") != c.root_domain(page_parts.hostname or ""):
            return CanonicalConflict(page_url, declared, expected, False, "different domain")

        page_segments = [s for s in page_parts.path.split("/") if s]
        declared_segments = [s for s in declared_parts.path.split("/") if s]
        shared = [s for s in page_segments if s in declared_segments]
        related = (
            len(shared) >= self.config.min_shared_segments
            and len(declared_segments) <= len(page_segments) + self.config.max_extra_depth
        )
        reason = "related category page" if related else "unrelated path"
        return CanonicalConflict(page_url, declared, expected, related, reason)


# ---------------------------------------------------------------------------
# Issues
# ---------------------------------------------------------------------------


def generate_duplicate_url_issues(analysis: DuplicateUrlAnalysis) -> List[Issue]:
    """Turn a duplicate analysis into Technical issues."""
    issues: List[Issue] = []

    if analysis.groups:
        affected: List[str] = []
        for group in analysis.groups:
            affected.extend(group.urls)
        details = "; ".join(
            f"{g.type.value}: {', '.join(g.urls)}" for g in analysis.groups[:10]
        )
        issues.append(Issue(
            category=IssueCategory.TECHNICAL,
            severity=Severity.HIGH,
            message=f"Found {analysis.total_duplicate_count} duplicate URL variations",
            details=details,
            affected_pages=tuple(affected),
            fix_instructions=" ".join(
                dict.fromkeys(g.recommendation for g in analysis.groups[:5])
            ),
            issue_type="duplicate-urls",
        ))

    real = [c for c in analysis.canonical_conflicts if not c.related]
    if real:
        issues.append(Issue(
            category=IssueCategory.TECHNICAL,
            severity=Severity.HIGH,
            message=f"Found {len(real)} canonical tag conflicts",
            details="; ".join(f"{c.page_url} -> {c.declared} ({c.reason})" for c in real[:10]),
            affected_pages=tuple(c.page_url for c in real),
            fix_instructions=duplicate_recommendation(
                DuplicateType.CANONICAL_CONFLICT, real[0].expected
            ),
            issue_type="canonical-conflict",
        ))

    related = [c for c in analysis.canonical_conflicts if c.related]
    if related:
        issues.append(Issue(
            category=IssueCategory.TECHNICAL,
            severity=Severity.LOW,
            message=f"{len(related)} pages declare a related category page as canonical",
            details="; ".join(f"{c.page_url} -> {c.declared}" for c in related[:10]),
            affected_pages=tuple(c.page_url for c in related),
            fix_instructions=(
                "Confirm these pages are meant to be consolidated into their "
                "category page; otherwise make each canonical self-referencing."
            ),
            issue_type="canonical-related",
        ))

    return issues


# ---------------------------------------------------------------------------
# Module-level helpers
# ---------------------------------------------------------------------------


def analyze_duplicates(
    pages: Iterable[CrawledPage],
    context: Optional[CrawlContext] = None,
    config: Optional[DuplicateConfig] = None,
) -> DuplicateUrlAnalysis:
    return DuplicateUrlAuditor(config).analyze(pages, context)
