"""
Tests for the URL Canonicalizer module.

Covers canonical forms, idempotence, context rewriting, root-domain
extraction, same-resource symmetry and the https:// retry policy.
"""
from __future__ import annotations

import pytest

try:
    from siteaudit.config import CanonicalizerConfig
    from siteaudit.errors import InvalidUrl
    from siteaudit.models import CrawlContext
    from siteaudit.url_canonicalizer import (
        UrlCanonicalizer,
        canonicalize,
        canonicalize_lenient,
        is_internal_link,
        is_same_resource,
        is_www_variant,
        normalize_url,
        preferred_url,
        root_domain,
        should_merge_urls,
    )
    HAS_MODULE = True
except ImportError:
    HAS_MODULE = False

pytestmark = pytest.mark.skipif(
    not HAS_MODULE, reason="url_canonicalizer module not available"
)


SAMPLE_URLS = [
    "https://example.com",
    "https://example.com/",
    "HTTPS://Example.COM:443/About/?b=2&a=1#team",
    "http://example.com:80/a//",
    "http://example.com:8080/x/",
    "https://www.example.com/blog/post-1/?utm_source=x&id=3",
    "https://example.com/p?b=1&a=2&a=1",
    "https://example.com/?&&x=1",
    "http://[::1]:8080/x/",
    "https://sub.example.co.uk/Path/",
    "https://example.com.:443/",
]


# ===================================================================
# Canonical form
# ===================================================================

class TestCanonicalize:
    """Test canonicalize() output."""

    def test_full_normalization(self):
        assert canonicalize("HTTPS://Example.com:443/About/?b=2&a=1#team") == (
            "https://example.com/About?a=1&b=2"
        )

    def test_root_gets_slash(self):
        assert canonicalize("https://example.com") == "https://example.com/"
        assert canonicalize("https://example.com/") == "https://example.com/"

    def test_default_ports_dropped(self):
        assert canonicalize("http://example.com:80") == "http://example.com/"
        assert canonicalize("https://example.com:443/a") == "https://example.com/a"

    def test_non_default_port_kept(self):
        assert canonicalize("http://example.com:8080/x/") == "http://example.com:8080/x"
        assert canonicalize("http://example.com:443/") == "http://example.com:443/"

    def test_trailing_slashes_stripped(self):
        assert canonicalize("https://example.com/a///") == "https://example.com/a"

    def test_fragment_removed(self):
        assert canonicalize("https://example.com/#top") == "https://example.com/"

    def test_path_case_preserved(self):
        assert canonicalize("https://EXAMPLE.com/About") == "https://example.com/About"

    def test_query_sorted_stably_by_key(self):
        assert canonicalize("https://example.com/p?b=1&a=2&a=1") == (
            "https://example.com/p?a=2&a=1&b=1"
        )

    def test_empty_query_pairs_dropped(self):
        assert canonicalize("https://example.com/?&&x=1") == "https://example.com/?x=1"
        assert canonicalize("https://example.com/?") == "https://example.com/"

    def test_ipv6_host(self):
        assert canonicalize("http://[::1]:8080/x/") == "http://[::1]:8080/x"

    @pytest.mark.parametrize("url", SAMPLE_URLS)
    def test_idempotent(self, url):
        once = canonicalize(url)
        assert canonicalize(once) == once

    @pytest.mark.parametrize("url", SAMPLE_URLS)
    def test_idempotent_with_context(self, url, context):
        once = canonicalize(url, context)
        assert canonicalize(once, context) == once


class TestContextRewriting:
    """Preferred host/protocol applied on a shared root domain."""

    def test_rewrites_same_root_domain(self, context):
        assert canonicalize("http://example.com/a/", context) == "https://www.example.com/a"

    def test_rewrites_subdomain(self, context):
        assert canonicalize("http://blog.example.com/a", context) == "https://www.example.com/a"

    def test_leaves_other_domains(self, context):
        assert canonicalize("http://other.org/a/", context) == "http://other.org/a"

    def test_old_default_port_dropped_after_protocol_change(self, context):
        assert canonicalize("http://example.com:80/a", context) == "https://www.example.com/a"

    def test_context_from_url(self):
        ctx = CrawlContext.from_url("https://www.example.co.uk/path")
        assert ctx.preferred_hostname == "www.example.co.uk"
        assert ctx.preferred_protocol == "https"
        assert ctx.root_domain == "example.co.uk"
        assert ctx.prefers_www is True


# ===================================================================
# Errors and retry
# ===================================================================

class TestInvalidUrls:
    """Malformed input and the https:// retry."""

    @pytest.mark.parametrize("url", [
        "not a url",
        "example.com/a",
        "ftp://example.com/file",
        "https://",
        "https://example.com:99999/",
        "https://example.com:abc/",
        "",
    ])
    def test_strict_rejects(self, url):
        with pytest.raises(InvalidUrl):
            canonicalize(url)

    def test_invalid_url_carries_url(self):
        with pytest.raises(InvalidUrl) as excinfo:
            canonicalize("https://example.com:abc/")
        assert excinfo.value.url == "https://example.com:abc/"

    def test_lenient_retries_with_https(self):
        assert canonicalize_lenient("example.com/a/") == "https://example.com/a"
        assert canonicalize_lenient("//example.com/a") == "https://example.com/a"

    def test_lenient_propagates_after_retry(self):
        with pytest.raises(InvalidUrl):
            canonicalize_lenient("not a url")
        with pytest.raises(InvalidUrl):
            canonicalize_lenient("https://")


# ===================================================================
# Root domains
# ===================================================================

class TestRootDomain:
    """Test root_domain() and is_same_resource()."""

    @pytest.mark.parametrize("host,expected", [
        ("www.example.com", "example.com"),
        ("Example.COM.", "example.com"),
        ("a.b.example.com", "example.com"),
        ("www.example.co.uk", "example.co.uk"),
        ("shop.example.com.au", "example.com.au"),
        ("co.uk", "co.uk"),
        ("localhost", "localhost"),
        ("192.168.0.1", "192.168.0.1"),
    ])
    def test_root_domain(self, host, expected):
        assert root_domain(host) == expected

    def test_custom_suffix_table(self):
        canon = UrlCanonicalizer(CanonicalizerConfig(compound_suffixes=("example.io",)))
        assert canon.root_domain("a.shop.example.io") == "shop.example.io"
        assert canon.root_domain("www.example.co.uk") == "co.uk"

    def test_same_resource(self):
        assert is_same_resource("https://www.example.com", "http://example.com/x")
        assert not is_same_resource("https://example.com", "https://example.org")

    @pytest.mark.parametrize("a,b", [
        ("https://www.example.com", "http://example.com/x"),
        ("https://example.com", "https://example.org"),
        ("not a url", "https://example.com"),
        ("example.com", "https://blog.example.com"),
    ])
    def test_same_resource_symmetric(self, a, b):
        assert is_same_resource(a, b) == is_same_resource(b, a)

    def test_unparseable_is_never_same(self):
        assert is_same_resource("not a url", "not a url") is False


# ===================================================================
# Helpers
# ===================================================================

class TestHelpers:
    """Host-style helpers and preferred URL selection."""

    def test_is_www_variant(self):
        assert is_www_variant("WWW.example.com")
        assert not is_www_variant("example.com")

    def test_normalize_url_keeps_host_case(self):
        assert normalize_url("https://Example.com/a/#x") == "https://Example.com/a"

    def test_preferred_url_prefers_https_then_shortest(self):
        urls = ["http://example.com/a", "https://www.example.com/a", "https://example.com/a"]
        assert preferred_url(urls) == "https://example.com/a"

    def test_preferred_url_follows_context_www_style(self, context):
        urls = ["http://example.com/a", "https://www.example.com/a", "https://example.com/a"]
        assert preferred_url(urls, context) == "https://www.example.com/a"

    def test_preferred_url_lexicographic_tiebreak(self):
        assert preferred_url(["https://example.com/b", "https://example.com/a"]) == (
            "https://example.com/a"
        )

    def test_preferred_url_prefers_lower_case_host(self):
        assert preferred_url(["https://Example.com/a", "https://example.com/a"]) == (
            "https://example.com/a"
        )

    def test_is_internal_link(self):
        assert is_internal_link("/about", "https://www.example.com/")
        assert is_internal_link("https://blog.example.com/x", "https://www.example.com/")
        assert not is_internal_link("https://other.com/", "https://www.example.com/")

    def test_should_merge_urls(self):
        assert should_merge_urls("https://www.example.com/a/", "http://example.com/a")
        assert not should_merge_urls("https://example.com/a", "https://example.com/b")
