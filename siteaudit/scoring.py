"""
Category Scoring Engine — SiteAudit Core
========================================

Turns deduplicated issues, crawled pages and site-wide flags into five
bounded category scores (Technical, On-page, Content, Accessibility,
Performance) and one weighted overall score.

Per category:
    1. Start at 100.
    2. Assign each issue to the first bucket whose keywords appear in its
       ``issue_type`` or message (unmatched issues fall into ``other``).
    3. Each bucket deducts ``min(cap, max(issue_points, page_points))`` where
       ``issue_points`` sums the severity weights of its issues and
       ``page_points`` is a rate re-derived from the pages themselves
       (share missing a title, share of images without alt text, ...).
    4. Technical also loses fixed points for a missing robots.txt/sitemap.
    5. With any High issue present the score is capped at
       ``max(floor, base - high_count * step)``.
    6. Accessibility is capped again when too few independent check types
       reported anything, so a silent analyzer cannot read as a perfect
       score.

Overall = weighted sum of the four non-performance categories, each passed
through a monotonic compression into [10, 90] first, clamped to [5, 95].

Usage:
    from siteaudit.scoring import ScoringEngine

    scores = ScoringEngine().score(issues, pages, SiteWideSignals())
    print(scores.overall_score, scores.technical)
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Pattern, Sequence, Tuple

from .config import ScoreBucket, ScoringConfig
from .models import CategoryScores, CrawledPage, Issue, IssueCategory, PageSpeedData, Severity, SiteWideSignals

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logger = logging.getLogger("scoring")
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

SCORE_MIN = 0.0
SCORE_MAX = 100.0
SCORE_PRECISION = 1

# Core Web Vitals thresholds: (good, needs-improvement, penalty-mid, penalty-poor)
CWV_THRESHOLDS: Dict[str, Tuple[float, float, float, float]] = {
    "lcp": (2500, 4000, 15, 30),
    "fcp": (1800, 3000, 10, 20),
    "cls": (0.1, 0.25, 5, 10),
    "ttfb": (800, 1800, 5, 10),
}
LCP_SUSPICIOUS_MS = 30000
LCP_SUSPICIOUS_FCP_MS = 5000
LCP_FALLBACK_MS = 10000


# ---------------------------------------------------------------------------
# Page-derived rates
# ---------------------------------------------------------------------------


def _content_pages(pages: Sequence[CrawledPage]) -> List[CrawledPage]:
    return [p for p in pages if 200 <= p.status_code < 400]


def _rate(pages: Sequence[CrawledPage], predicate: Callable[[CrawledPage], bool]) -> float:
    content = _content_pages(pages)
    if not content:
        return 0.0
    return sum(1 for p in content if predicate(p)) / len(content)


def _error_rate(pages: Sequence[CrawledPage], config: ScoringConfig) -> float:
    if not pages:
        return 0.0
    return sum(1 for p in pages if p.is_error) / len(pages)


def _missing_alt_rate(pages: Sequence[CrawledPage], config: ScoringConfig) -> float:
    content = _content_pages(pages)
    images = sum(max(0, p.image_count) for p in content)
    if images == 0:
        return 0.0
    missing = sum(max(0, p.missing_alt_count) for p in content)
    return min(1.0, missing / images)


def validated_lcp(speed: PageSpeedData) -> Optional[float]:
    """LCP with obviously broken measurements repaired.

    An LCP over 30s alongside a sub-5s FCP is treated as a measurement error
    and replaced by 10s; an LCP below FCP is raised to FCP.
    """
    lcp, fcp = speed.lcp, speed.fcp
    if lcp is None or fcp is None:
        return lcp
    if lcp > LCP_SUSPICIOUS_MS and fcp < LCP_SUSPICIOUS_FCP_MS:
        logger.warning("Suspicious LCP %.0fms with FCP %.0fms; capping to %dms", lcp, fcp, LCP_FALLBACK_MS)
        lcp = float(LCP_FALLBACK_MS)
    if lcp < fcp:
        logger.warning("LCP %.0fms below FCP %.0fms; using FCP", lcp, fcp)
        lcp = fcp
    return lcp


def core_web_vitals_subscore(pages: Sequence[CrawledPage], neutral: float = 70.0) -> float:
    """0-100 subscore from the first page carrying page-speed data."""
    speed = next((p.page_speed for p in pages if p.page_speed is not None), None)
    if speed is None:
        return neutral
    values = {
        "lcp": validated_lcp(speed),
        "fcp": speed.fcp,
        "cls": speed.cls,
        "ttfb": speed.ttfb,
    }
    score = 100.0
    for metric, value in values.items():
        if value is None:
            continue
        good, fair, mid, poor = CWV_THRESHOLDS[metric]
        if value <= good:
            continue
        score -= mid if value <= fair else poor
    return max(0.0, score)


def _cwv_deficit(pages: Sequence[CrawledPage], config: ScoringConfig) -> float:
    return 1.0 - core_web_vitals_subscore(pages, config.neutral_cwv_subscore) / 100.0


# Each returns a fraction in [0, 1]; buckets scale it by attribute_weight.
PAGE_ATTRIBUTES: Dict[str, Callable[[Sequence[CrawledPage], ScoringConfig], float]] = {
    "error_rate": _error_rate,
    "missing_title_rate": lambda pages, cfg: _rate(pages, lambda p: not p.title.strip()),
    "missing_meta_rate": lambda pages, cfg: _rate(pages, lambda p: not p.meta_description.strip()),
    "missing_h1_rate": lambda pages, cfg: _rate(pages, lambda p: p.h1_count <= 0),
    "thin_rate": lambda pages, cfg: _rate(pages, lambda p: p.word_count < cfg.thin_word_count),
    "missing_alt_rate": _missing_alt_rate,
    "missing_viewport_rate": lambda pages, cfg: _rate(pages, lambda p: not p.has_viewport),
    "cwv_deficit": _cwv_deficit,
}


# ===================================================================
# ENGINE
# ===================================================================


@dataclass(frozen=True)
class BucketResult:
    name: str
    issue_points: float
    page_points: float
    deduction: float
    issue_count: int


class ScoringEngine:
    """Computes ``CategoryScores``.

    Pure and deterministic: the same inputs always yield the same scores and
    no state is kept between calls.

    Parameters
    ----------
    config:
        Severity weights, bucket tables, ceilings and overall weights.
    """

    def __init__(self, config: Optional[ScoringConfig] = None) -> None:
        self.config = config or ScoringConfig()
        self._patterns: Dict[IssueCategory, List[Tuple[ScoreBucket, Optional[Pattern[str]]]]] = {}
        for category, buckets in self.config.buckets.items():
            compiled = []
            for bucket in buckets:
                pattern = None
                if bucket.keywords:
                    body = "|".join(re.escape(k.lower()) for k in bucket.keywords)
                    pattern = re.compile(rf"\b(?:{body})")
                compiled.append((bucket, pattern))
            self._patterns[category] = compiled

    # -------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------

    def score(
        self,
        issues: Iterable[Issue],
        pages: Sequence[CrawledPage],
        site_wide: Optional[SiteWideSignals] = None,
    ) -> CategoryScores:
        """Score one audit.

        Parameters
        ----------
        issues:
            Deduplicated issues.
        pages:
            Deduplicated pages, error pages included (they feed the
            Technical error rate).
        site_wide:
            robots.txt / sitemap presence; both assumed present if omitted.

        Returns
        -------
        CategoryScores
            An empty page collection yields the neutral score everywhere.
        """
        page_list = list(pages)
        issue_list = list(issues)
        site_wide = site_wide or SiteWideSignals()

        if not page_list:
            neutral = self.config.neutral_score
            logger.info("No pages to score; returning neutral scores (%.1f)", neutral)
            return CategoryScores(neutral, neutral, neutral, neutral, neutral, neutral)

        by_category: Dict[IssueCategory, List[Issue]] = {c: [] for c in IssueCategory}
        for issue in issue_list:
            by_category[issue.category].append(issue)

        scores = {
            category: self.category_score(category, by_category[category], page_list, site_wide)
            for category in IssueCategory
        }
        overall = self.overall_score(scores)
        result = CategoryScores(
            technical=scores[IssueCategory.TECHNICAL],
            on_page=scores[IssueCategory.ON_PAGE],
            content=scores[IssueCategory.CONTENT],
            accessibility=scores[IssueCategory.ACCESSIBILITY],
            performance=scores[IssueCategory.PERFORMANCE],
            overall_score=overall,
        )
        logger.info(
            "Scores: overall=%.0f technical=%.1f on-page=%.1f content=%.1f "
            "accessibility=%.1f performance=%.1f",
            result.overall_score, result.technical, result.on_page, result.content,
            result.accessibility, result.performance,
        )
        return result

    def category_score(
        self,
        category: IssueCategory,
        issues: Sequence[Issue],
        pages: Sequence[CrawledPage],
        site_wide: SiteWideSignals,
    ) -> float:
        cfg = self.config
        buckets = self.bucket_breakdown(category, issues, pages)
        score = SCORE_MAX - sum(b.deduction for b in buckets)

        if category is IssueCategory.TECHNICAL:
            if not site_wide.robots_txt_exists:
                score -= cfg.robots_txt_penalty
            if not site_wide.sitemap_exists:
                score -= cfg.sitemap_penalty

        high_count = sum(1 for i in issues if i.severity is Severity.HIGH)
        if high_count:
            ceiling = self.severity_ceiling(high_count)
            if score > ceiling:
                logger.debug(
                    "%s capped at %.1f by %d High issues", category.value, ceiling, high_count
                )
                score = ceiling

        if category is IssueCategory.ACCESSIBILITY:
            reported = {
                b.name for b in buckets
                if b.issue_count > 0 and b.name in cfg.accessibility_check_buckets
            }
            if len(reported) < cfg.accessibility_min_check_types:
                score = min(score, cfg.accessibility_shallow_ceiling)

        return round(max(SCORE_MIN, min(SCORE_MAX, score)), SCORE_PRECISION)

    def bucket_breakdown(
        self,
        category: IssueCategory,
        issues: Sequence[Issue],
        pages: Sequence[CrawledPage],
    ) -> List[BucketResult]:
        """Per-bucket deductions for one category."""
        compiled = self._patterns.get(category, [])
        assigned: Dict[str, List[Issue]] = {bucket.name: [] for bucket, _ in compiled}
        fallback = next((b.name for b, pattern in compiled if pattern is None), None)

        for issue in issues:
            text = f"{issue.issue_type} {issue.message}".lower()
            target = fallback
            for bucket, pattern in compiled:
                if pattern is not None and pattern.search(text):
                    target = bucket.name
                    break
            if target is not None:
                assigned[target].append(issue)

        results: List[BucketResult] = []
        for bucket, _ in compiled:
            matched = assigned[bucket.name]
            issue_points = sum(self.config.severity_weights.get(i.severity, 0.0) for i in matched)
            page_points = 0.0
            if bucket.attribute:
                rate_fn = PAGE_ATTRIBUTES.get(bucket.attribute)
                if rate_fn is None:
                    logger.warning("Unknown page attribute %r in bucket %s", bucket.attribute, bucket.name)
                else:
                    page_points = rate_fn(pages, self.config) * bucket.attribute_weight
            deduction = min(bucket.cap, max(issue_points, page_points))
            results.append(BucketResult(bucket.name, issue_points, page_points, deduction, len(matched)))
        return results

    def severity_ceiling(self, high_count: int) -> float:
        cfg = self.config
        return max(cfg.ceiling_floor, cfg.ceiling_base - high_count * cfg.ceiling_step)

    # -------------------------------------------------------------------
    # Overall
    # -------------------------------------------------------------------

    def compress(self, score: float) -> float:
        """Monotonic map of [0, 100] into [floor, ceiling]; identity when disabled."""
        cfg = self.config
        if not cfg.compress_scores:
            return score
        span = cfg.compress_ceiling - cfg.compress_floor
        value = cfg.compress_floor + (score / SCORE_MAX) * span
        return max(cfg.compress_floor, min(cfg.compress_ceiling, value))

    def overall_score(self, scores: Dict[IssueCategory, float]) -> float:
        cfg = self.config
        total = sum(
            self.compress(scores[category]) * weight
            for category, weight in cfg.overall_weights.items()
            if category is not IssueCategory.PERFORMANCE
        )
        return float(max(cfg.overall_min, min(cfg.overall_max, round(total))))


# ---------------------------------------------------------------------------
# Module-level helpers
# ---------------------------------------------------------------------------


def score(
    issues: Iterable[Issue],
    pages: Sequence[CrawledPage],
    site_wide: Optional[SiteWideSignals] = None,
    config: Optional[ScoringConfig] = None,
) -> CategoryScores:
    return ScoringEngine(config).score(issues, pages, site_wide)
