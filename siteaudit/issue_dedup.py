"""
Issue Deduplicator — SiteAudit Core
===================================

Merges issue observations that describe the same underlying defect and
provides the grouping, priority ordering and summary helpers used when
assembling reports.

Two issues collide when they share ``(category, normalize(message))``.
``normalize`` lower-cases, collapses whitespace and rewrites leading synonym
phrases to canonical tokens ("Page title" -> "title", "Not found" ->
"missing"), repeatedly, so "Missing title tag" and "No page title" share the
key ``missing title``.

On collision the higher severity wins outright. Otherwise the first-seen
issue is kept, gains the other's affected pages, and borrows its fix
instructions if it had none.

Usage:
    from siteaudit.issue_dedup import dedupe_issues, summarize_issues

    unique = dedupe_issues(raw_issues)
    summary = summarize_issues(unique)
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, List, Optional, Pattern, Tuple

from .config import IssueNormalizerConfig
from .models import Issue, IssueCategory, Severity

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logger = logging.getLogger("issue_dedup")
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

_WHITESPACE_RE = re.compile(r"\s+")

PRIORITY_WEIGHTS: Dict[Severity, int] = {
    Severity.HIGH: 100,
    Severity.MEDIUM: 50,
    Severity.LOW: 10,
}

SUMMARY_TOP_N = 10


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------


class IssueNormalizer:
    """Maps issue messages to comparison keys.

    Parameters
    ----------
    config:
        Ordered synonym rules; each rule's alternatives are tried longest
        first and must end on a word boundary.
    """

    def __init__(self, config: Optional[IssueNormalizerConfig] = None) -> None:
        self.config = config or IssueNormalizerConfig()
        self._rules: List[Tuple[Pattern[str], str]] = []
        for alternatives, token in self.config.synonym_rules:
            ordered = sorted(
                {a.strip().lower() for a in alternatives if a.strip()},
                key=lambda a: (-len(a), a),
            )
            if not ordered:
                continue
            body = "|".join(r"\s+".join(re.escape(w) for w in alt.split()) for alt in ordered)
            self._rules.append((re.compile(rf"(?:{body})\b"), token))

    def normalize(self, message: str) -> str:
        text = _WHITESPACE_RE.sub(" ", (message or "").lower()).strip()
        tokens: List[str] = []
        while text:
            for pattern, token in self._rules:
                match = pattern.match(text)
                if match and match.end() > 0:
                    tokens.append(token)
                    text = text[match.end():].lstrip(" :-,")
                    break
            else:
                break
        if text:
            tokens.append(text)
        return " ".join(tokens)

    def key(self, issue: Issue) -> Tuple[IssueCategory, str]:
        return issue.category, self.normalize(issue.message)


# ---------------------------------------------------------------------------
# Deduplication
# ---------------------------------------------------------------------------


def _merge(kept: Issue, other: Issue) -> Issue:
    pages = kept.affected_pages + tuple(p for p in other.affected_pages if p not in kept.affected_pages)
    fix = kept.fix_instructions or other.fix_instructions
    if pages == kept.affected_pages and fix == kept.fix_instructions:
        return kept
    return replace(kept, affected_pages=pages, fix_instructions=fix)


def dedupe_issues(
    issues: Iterable[Issue],
    normalizer: Optional[IssueNormalizer] = None,
) -> List[Issue]:
    """Collapse issues sharing ``(category, normalized message)``.

    The surviving issue keeps the position of the first issue seen for its
    key.
    """
    normalizer = normalizer or IssueNormalizer()
    kept: Dict[Tuple[IssueCategory, str], Issue] = {}
    total = 0

    for issue in issues:
        total += 1
        key = normalizer.key(issue)
        current = kept.get(key)
        if current is None:
            kept[key] = issue
        elif issue.severity.rank > current.severity.rank:
            logger.debug(
                "Issue %r (%s) supersedes %r (%s)",
                issue.message, issue.severity.value, current.message, current.severity.value,
            )
            kept[key] = issue
        else:
            kept[key] = _merge(current, issue)

    if total != len(kept):
        logger.info("Deduplicated %d issues -> %d unique issues", total, len(kept))
    return list(kept.values())


# ---------------------------------------------------------------------------
# Grouping, ordering, summary
# ---------------------------------------------------------------------------


def group_issues(issues: Iterable[Issue]) -> Dict[IssueCategory, List[Issue]]:
    """Bucket issues by category, every category present (possibly empty)."""
    grouped: Dict[IssueCategory, List[Issue]] = {c: [] for c in IssueCategory}
    for issue in issues:
        grouped[issue.category].append(issue)
    return grouped


def priority_score(issue: Issue) -> int:
    return PRIORITY_WEIGHTS[issue.severity] + len(issue.affected_pages)


def sort_issues_by_priority(issues: Iterable[Issue]) -> List[Issue]:
    """Most urgent first: severity weight plus number of affected pages."""
    return sorted(issues, key=priority_score, reverse=True)


@dataclass(frozen=True)
class IssueSummary:
    total: int = 0
    by_severity: Dict[str, int] = field(default_factory=dict)
    by_category: Dict[str, int] = field(default_factory=dict)
    top_issues: Tuple[Issue, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "by_severity": dict(self.by_severity),
            "by_category": dict(self.by_category),
            "top_issues": [i.to_dict() for i in self.top_issues],
        }


def summarize_issues(issues: Iterable[Issue]) -> IssueSummary:
    issue_list = list(issues)
    by_severity = {s.value: 0 for s in Severity}
    by_category = {c.value: 0 for c in IssueCategory}
    for issue in issue_list:
        by_severity[issue.severity.value] += 1
        by_category[issue.category.value] += 1
    return IssueSummary(
        total=len(issue_list),
        by_severity=by_severity,
        by_category=by_category,
        top_issues=tuple(sort_issues_by_priority(issue_list)[:SUMMARY_TOP_N]),
    )


# ---------------------------------------------------------------------------
# Module-level helpers
# ---------------------------------------------------------------------------

_default_normalizer = IssueNormalizer()


def normalize_message(message: str) -> str:
    return _default_normalizer.normalize(message)
