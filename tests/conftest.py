"""
Shared fixtures for the siteaudit test suite.

Provides page/issue factories and small crawl snapshots so every test runs
on in-memory data only.
"""

import json

import pytest

from siteaudit.models import CrawlContext, CrawledPage, Issue, SiteWideSignals


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------

@pytest.fixture
def make_page():
    """Factory for CrawledPage with healthy defaults."""

    def _make(url, **overrides):
        fields = {
            "status_code": 200,
            "word_count": 800,
            "title": "A page title of reasonable length",
            "meta_description": "A meta description.",
            "h1_count": 1,
            "has_viewport": True,
        }
        fields.update(overrides)
        return CrawledPage(url=url, **fields)

    return _make


@pytest.fixture
def make_issue():
    """Factory for Issue with Technical/Medium defaults."""

    def _make(message, category="Technical", severity="Medium", **overrides):
        return Issue(category=category, severity=severity, message=message, **overrides)

    return _make


# ---------------------------------------------------------------------------
# Crawl fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def context():
    """Crawl context preferring https://www.example.com."""
    return CrawlContext(
        preferred_hostname="www.example.com",
        preferred_protocol="https",
        root_domain="example.com",
    )


@pytest.fixture
def site_pages(make_page):
    """Five-page site: home links to every section, blog links back home."""
    return [
        make_page(
            "https://www.example.com/",
            outbound_internal_links=("/about", "/blog/", "/contact", "/services"),
        ),
        make_page("https://www.example.com/about", outbound_internal_links=("/",)),
        make_page(
            "https://www.example.com/blog",
            outbound_internal_links=("/", "/blog/post-1"),
            contextual_links=("/blog/post-1",),
        ),
        make_page("https://www.example.com/blog/post-1", outbound_internal_links=("/blog",)),
        make_page("https://www.example.com/contact", outbound_internal_links=()),
    ]


@pytest.fixture
def healthy_signals():
    return SiteWideSignals(robots_txt_exists=True, sitemap_exists=True)


@pytest.fixture
def snapshot_file(tmp_path, site_pages):
    """Crawl snapshot JSON on disk for CLI tests."""
    data = {
        "pages": [p.to_dict() for p in site_pages]
        + [{"url": "https://www.example.com/gone", "status_code": 404}],
        "issues": [
            {"category": "On-page", "severity": "Medium", "message": "Title too long",
             "affected_pages": ["https://www.example.com/about"]},
        ],
        "site_wide": {"robots_txt_exists": True, "sitemap_exists": False},
        "root_url": "https://www.example.com/",
    }
    path = tmp_path / "crawl.json"
    path.write_text(json.dumps(data), encoding="utf-8")
    return path
