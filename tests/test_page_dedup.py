"""
Tests for the Page Deduplicator module.

Covers the replacement rule, first-seen ordering, convergence, input
immutability, the valid/error split and the generated broken-pages issue.
"""
from __future__ import annotations

import pytest

try:
    from siteaudit.models import IssueCategory, Severity
    from siteaudit.page_dedup import (
        broken_pages_issue,
        deduplicate_pages,
        filter_valid_pages,
    )
    HAS_MODULE = True
except ImportError:
    HAS_MODULE = False

pytestmark = pytest.mark.skipif(
    not HAS_MODULE, reason="page_dedup module not available"
)


# ===================================================================
# Deduplication
# ===================================================================

class TestDeduplicatePages:
    """Test the most-informative replacement rule."""

    def test_higher_word_count_wins_despite_literal_mismatch(self, make_page):
        pages = [
            make_page("https://ex.com/", word_count=900),
            make_page("https://ex.com", word_count=100),
        ]
        result = deduplicate_pages(pages)
        assert len(result) == 1
        assert result[0].word_count == 900
        assert result[0].url == "https://ex.com/"

    def test_later_page_with_more_words_replaces(self, make_page):
        pages = [
            make_page("https://ex.com/a/", word_count=100),
            make_page("https://ex.com/a", word_count=500),
        ]
        result = deduplicate_pages(pages)
        assert [p.url for p in result] == ["https://ex.com/a"]

    def test_fetched_replaces_unfetched(self, make_page):
        pages = [
            make_page("https://ex.com/a", status_code=0, word_count=0),
            make_page("https://ex.com/a/", status_code=200, word_count=0),
        ]
        assert deduplicate_pages(pages)[0].status_code == 200

    def test_non_error_replaces_error(self, make_page):
        pages = [
            make_page("https://ex.com/a", status_code=500, word_count=50),
            make_page("https://ex.com/a#frag", status_code=200, word_count=50),
        ]
        assert deduplicate_pages(pages)[0].status_code == 200

    def test_tie_keeps_first_seen(self, make_page):
        first = make_page("https://ex.com/a", word_count=300, title="first")
        second = make_page("https://ex.com/a/", word_count=300, title="second")
        assert deduplicate_pages([first, second])[0].title == "first"

    def test_error_does_not_replace_success(self, make_page):
        pages = [
            make_page("https://ex.com/a", status_code=200, word_count=300),
            make_page("https://ex.com/a/", status_code=404, word_count=300),
        ]
        assert deduplicate_pages(pages)[0].status_code == 200

    def test_order_is_first_seen_per_key(self, make_page):
        pages = [
            make_page("https://ex.com/b"),
            make_page("https://ex.com/a"),
            make_page("https://ex.com/b/", word_count=5000),
        ]
        result = deduplicate_pages(pages)
        assert [p.url for p in result] == ["https://ex.com/b/", "https://ex.com/a"]

    def test_context_folds_www_variants(self, make_page, context):
        pages = [
            make_page("http://example.com/a", word_count=100),
            make_page("https://www.example.com/a", word_count=200),
        ]
        assert len(deduplicate_pages(pages)) == 2
        result = deduplicate_pages(pages, context)
        assert len(result) == 1
        assert result[0].url == "https://www.example.com/a"

    def test_unparseable_urls_keyed_by_raw_text(self, make_page):
        pages = [
            make_page("not a url", word_count=10),
            make_page("not a url", word_count=20),
            make_page("https://ex.com/"),
        ]
        result = deduplicate_pages(pages)
        assert len(result) == 2
        assert result[0].word_count == 20

    def test_convergence(self, make_page):
        pages = [
            make_page("https://ex.com/", word_count=900),
            make_page("https://ex.com", word_count=100),
            make_page("https://ex.com/a/", status_code=0),
            make_page("https://ex.com/a", status_code=200),
            make_page("https://ex.com/b?y=1&x=2"),
            make_page("https://ex.com/b?x=2&y=1", word_count=1200),
        ]
        once = deduplicate_pages(pages)
        assert deduplicate_pages(once) == once

    def test_input_not_mutated(self, make_page):
        pages = [make_page("https://ex.com/"), make_page("https://ex.com", word_count=9999)]
        snapshot = list(pages)
        deduplicate_pages(pages)
        assert pages == snapshot

    def test_empty(self):
        assert deduplicate_pages([]) == []


# ===================================================================
# Valid / error split
# ===================================================================

class TestFilterValidPages:
    """Test filter_valid_pages()."""

    def test_split(self, make_page):
        pages = [
            make_page("https://ex.com/ok", status_code=200),
            make_page("https://ex.com/moved", status_code=301),
            make_page("https://ex.com/missing", status_code=404),
            make_page("https://ex.com/boom", status_code=503),
            make_page("https://ex.com/never", status_code=0),
        ]
        valid, errored = filter_valid_pages(pages)
        assert [p.url for p in valid] == ["https://ex.com/ok", "https://ex.com/moved"]
        assert [p.url for p in errored] == [
            "https://ex.com/missing", "https://ex.com/boom", "https://ex.com/never",
        ]

    def test_informational_status_in_neither(self, make_page):
        valid, errored = filter_valid_pages([make_page("https://ex.com/", status_code=102)])
        assert valid == [] and errored == []


class TestBrokenPagesIssue:
    """Test broken_pages_issue()."""

    def test_none_without_errors(self):
        assert broken_pages_issue([]) is None

    def test_high_technical_issue(self, make_page):
        errored = [make_page(f"https://ex.com/{i}", status_code=404) for i in range(12)]
        issue = broken_pages_issue(errored)
        assert issue.category is IssueCategory.TECHNICAL
        assert issue.severity is Severity.HIGH
        assert "12 pages" in issue.message
        assert len(issue.affected_pages) == 12
        assert "(+2 more)" in issue.details
