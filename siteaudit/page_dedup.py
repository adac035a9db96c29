"""
Page Deduplicator — SiteAudit Core
==================================

Collapses crawled page records that refer to the same canonical URL into a
single, most informative record, and splits a page collection into fetched
pages and error pages.

A candidate replaces the page kept for its canonical form only when:
    - it has a strictly higher word count, or
    - the kept page was never fetched (status 0) and the candidate was, or
    - the kept page is an error (status >= 400) and the candidate is not.
Otherwise the first-seen page stays. Output order is the first-seen order of
each canonical form, so ``deduplicate_pages`` is idempotent.

Usage:
    from siteaudit.page_dedup import deduplicate_pages, filter_valid_pages

    unique = deduplicate_pages(pages, context)
    valid, errored = filter_valid_pages(unique)
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .errors import InvalidUrl
from .models import CrawlContext, CrawledPage, Issue, IssueCategory, Severity
from .url_canonicalizer import UrlCanonicalizer

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logger = logging.getLogger("page_dedup")
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

MAX_LISTED_BROKEN_PAGES = 10


# ---------------------------------------------------------------------------
# Deduplication
# ---------------------------------------------------------------------------


def _should_replace(kept: CrawledPage, candidate: CrawledPage) -> bool:
    if candidate.word_count > kept.word_count:
        return True
    if kept.status_code == 0 and candidate.status_code > 0:
        return True
    if kept.status_code >= 400 and candidate.status_code < 400:
        return True
    return False


def page_key(
    page: CrawledPage,
    context: Optional[CrawlContext] = None,
    canonicalizer: Optional[UrlCanonicalizer] = None,
) -> str:
    """Canonical grouping key for a page; raw URL text when unparseable."""
    canonicalizer = canonicalizer or UrlCanonicalizer()
    try:
        return canonicalizer.canonicalize_lenient(page.url, context)
    except InvalidUrl as exc:
        logger.warning("Keeping unparseable page URL as-is: %s", exc)
        return page.url.strip() if isinstance(page.url, str) else repr(page.url)


def deduplicate_pages(
    pages: Iterable[CrawledPage],
    context: Optional[CrawlContext] = None,
    canonicalizer: Optional[UrlCanonicalizer] = None,
) -> List[CrawledPage]:
    """Return one page per canonical URL.

    Parameters
    ----------
    pages:
        Crawled page records in crawl order. Never mutated.
    context:
        Optional crawl context; folds www/protocol variants onto the
        preferred host before grouping.

    Returns
    -------
    list[CrawledPage]
        The kept page for each canonical form, in first-seen order.
    """
    canonicalizer = canonicalizer or UrlCanonicalizer()
    kept: Dict[str, CrawledPage] = {}
    total = 0

    for page in pages:
        total += 1
        key = page_key(page, context, canonicalizer)
        current = kept.get(key)
        if current is None:
            kept[key] = page
        elif _should_replace(current, page):
            logger.debug(
                "Replacing %s (%d words, status %d) with %s (%d words, status %d)",
                current.url, current.word_count, current.status_code,
                page.url, page.word_count, page.status_code,
            )
            kept[key] = page

    if total != len(kept):
        logger.info("Deduplicated %d pages -> %d unique pages", total, len(kept))
    return list(kept.values())


def filter_valid_pages(
    pages: Sequence[CrawledPage],
) -> Tuple[List[CrawledPage], List[CrawledPage]]:
    """Split pages into ``(valid, errored)``.

    Valid means ``200 <= status < 400``; errored means ``status >= 400`` or
    ``status == 0``. Other statuses (1xx) land in neither list.
    """
    valid = [p for p in pages if 200 <= p.status_code < 400]
    errored = [p for p in pages if p.status_code >= 400 or p.status_code == 0]
    return valid, errored


def broken_pages_issue(errored: Sequence[CrawledPage]) -> Optional[Issue]:
    """Summarize error pages as one High-severity Technical issue."""
    if not errored:
        return None
    listed = [p.url for p in errored[:MAX_LISTED_BROKEN_PAGES]]
    more = len(errored) - len(listed)
    details = ", ".join(listed)
    if more > 0:
        details = f"{details} (+{more} more)"
    return Issue(
        category=IssueCategory.TECHNICAL,
        severity=Severity.HIGH,
        message=f"Broken pages detected: {len(errored)} pages returned error status codes",
        details=details,
        affected_pages=tuple(p.url for p in errored),
        fix_instructions=(
            "Fix or redirect pages returning 4xx/5xx responses and update "
            "internal links that point to them."
        ),
        issue_type="broken-pages",
    )
