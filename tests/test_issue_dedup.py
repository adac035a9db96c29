"""
Tests for the Issue Deduplicator module.

Covers message normalization, collision handling by severity, affected-page
union, fix-instruction backfill, and the grouping/priority/summary helpers.
"""
from __future__ import annotations

import pytest

try:
    from siteaudit.config import IssueNormalizerConfig
    from siteaudit.issue_dedup import (
        IssueNormalizer,
        dedupe_issues,
        group_issues,
        normalize_message,
        priority_score,
        sort_issues_by_priority,
        summarize_issues,
    )
    from siteaudit.models import IssueCategory, Severity
    HAS_MODULE = True
except ImportError:
    HAS_MODULE = False

pytestmark = pytest.mark.skipif(
    not HAS_MODULE, reason="issue_dedup module not available"
)


# ===================================================================
# Normalization
# ===================================================================

class TestNormalizeMessage:
    """Test normalize_message()."""

    @pytest.mark.parametrize("message,expected", [
        ("Missing title tag", "missing title"),
        ("No page title", "missing title"),
        ("Page title too short", "title too short"),
        ("  Missing   META description ", "missing meta description"),
        ("Meta desc not found", "meta description missing"),
        ("Not found: H1 heading", "missing h1"),
        ("Images without alt text", "images without alt text"),
        ("Notable redirect chain", "notable redirect chain"),
        ("", ""),
    ])
    def test_normalize(self, message, expected):
        assert normalize_message(message) == expected

    def test_custom_rules(self):
        normalizer = IssueNormalizer(IssueNormalizerConfig(
            synonym_rules=((("absent",), "missing"),)
        ))
        assert normalizer.normalize("Absent canonical") == "missing canonical"
        assert normalizer.normalize("Missing canonical") == "missing canonical"


# ===================================================================
# Deduplication
# ===================================================================

class TestDedupeIssues:
    """Collision handling."""

    def test_distinct_normalized_keys_survive(self, make_issue):
        issues = [
            make_issue("Missing title tag", severity="High"),
            make_issue("Page title too short", severity="Low"),
        ]
        assert len(dedupe_issues(issues)) == 2

    def test_higher_severity_wins(self, make_issue):
        issues = [
            make_issue("Missing meta description", severity="Medium"),
            make_issue("Missing meta description", severity="High"),
        ]
        result = dedupe_issues(issues)
        assert len(result) == 1
        assert result[0].severity is Severity.HIGH

    def test_equal_severity_merges_pages_and_backfills_fix(self, make_issue):
        issues = [
            make_issue("Missing H1", affected_pages=("https://ex.com/a", "https://ex.com/b")),
            make_issue(
                "No h1 tag",
                affected_pages=("https://ex.com/b", "https://ex.com/c"),
                fix_instructions="Add one H1 per page.",
            ),
        ]
        result = dedupe_issues(issues)
        assert len(result) == 1
        kept = result[0]
        assert kept.message == "Missing H1"
        assert kept.affected_pages == ("https://ex.com/a", "https://ex.com/b", "https://ex.com/c")
        assert kept.fix_instructions == "Add one H1 per page."

    def test_existing_fix_not_overwritten(self, make_issue):
        issues = [
            make_issue("Missing H1", fix_instructions="first"),
            make_issue("Missing H1", fix_instructions="second"),
        ]
        assert dedupe_issues(issues)[0].fix_instructions == "first"

    def test_lower_severity_merges_into_kept(self, make_issue):
        issues = [
            make_issue("Slow TTFB", category="Performance", severity="High", affected_pages=("a",)),
            make_issue("Slow TTFB", category="Performance", severity="Low", affected_pages=("b",)),
        ]
        result = dedupe_issues(issues)
        assert result[0].severity is Severity.HIGH
        assert result[0].affected_pages == ("a", "b")

    def test_category_is_part_of_key(self, make_issue):
        issues = [
            make_issue("Missing title", category="Technical"),
            make_issue("Missing title", category="On-page"),
        ]
        assert len(dedupe_issues(issues)) == 2

    def test_position_of_first_seen_kept(self, make_issue):
        issues = [
            make_issue("Missing title", severity="Low"),
            make_issue("Broken links"),
            make_issue("Missing title tag", severity="High"),
        ]
        result = dedupe_issues(issues)
        assert [i.message for i in result] == ["Missing title tag", "Broken links"]

    def test_no_duplicate_keys_after_dedup(self, make_issue):
        normalizer = IssueNormalizer()
        issues = [
            make_issue(m, severity=s)
            for m in ("Missing title", "No title tag", "Title not found", "Page title too long")
            for s in ("Low", "High", "Medium")
        ]
        keys = [normalizer.key(i) for i in dedupe_issues(issues, normalizer)]
        assert len(keys) == len(set(keys))

    def test_input_not_mutated(self, make_issue):
        first = make_issue("Missing H1", affected_pages=("a",))
        dedupe_issues([first, make_issue("Missing H1", affected_pages=("b",))])
        assert first.affected_pages == ("a",)


# ===================================================================
# Grouping and summary
# ===================================================================

class TestIssueProcessing:
    """group_issues, priority ordering and summaries."""

    def test_group_issues(self, make_issue):
        grouped = group_issues([
            make_issue("A", category="Content"),
            make_issue("B", category="Content"),
            make_issue("C", category="Technical"),
        ])
        assert len(grouped[IssueCategory.CONTENT]) == 2
        assert len(grouped[IssueCategory.TECHNICAL]) == 1
        assert grouped[IssueCategory.PERFORMANCE] == []

    def test_priority_order(self, make_issue):
        low_wide = make_issue("Low", severity="Low", affected_pages=tuple(f"p{i}" for i in range(30)))
        high = make_issue("High", severity="High")
        medium = make_issue("Medium", severity="Medium", affected_pages=("p1",))
        ordered = sort_issues_by_priority([low_wide, medium, high])
        assert [i.message for i in ordered] == ["High", "Medium", "Low"]
        assert priority_score(low_wide) == 40

    def test_summary(self, make_issue):
        summary = summarize_issues([
            make_issue("A", severity="High"),
            make_issue("B", severity="Low", category="Content"),
        ])
        assert summary.total == 2
        assert summary.by_severity == {"High": 1, "Medium": 0, "Low": 1}
        assert summary.by_category["Content"] == 1
        assert summary.top_issues[0].message == "A"
        assert summary.to_dict()["total"] == 2
