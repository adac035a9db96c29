"""
URL Canonicalizer — SiteAudit Core
==================================

Normalizes URLs observed during a crawl into a single canonical string and
classifies URL pairs as the same site. Every other component keys its
lookups by the forms produced here, so canonicalization is idempotent:
``canonicalize(canonicalize(u)) == canonicalize(u)``.

Canonical form:
    - scheme and host lower-cased, fragment dropped
    - default ports (80 for http, 443 for https) removed
    - trailing slashes stripped from non-root paths, empty path becomes ``/``
    - query parameters sorted by key (stable, raw text kept)
    - with a crawl context, host and scheme rewritten to the preferred ones
      whenever the host shares the context's root domain

Usage:
    from siteaudit.url_canonicalizer import canonicalize, is_same_resource

    canonicalize("HTTPS://Example.com:443/About/?b=2&a=1#team")
    # -> "https://example.com/About?a=1&b=2"
    is_same_resource("https://www.example.com", "http://example.com/x")
    # -> True

CLI:
    python -m siteaudit.audit_core canonicalize "http://www.example.com/a/"
"""

from __future__ import annotations

import ipaddress
import logging
from typing import Iterable, List, Optional
from urllib.parse import SplitResult, urljoin, urlsplit, urlunsplit

from .config import CanonicalizerConfig
from .errors import InvalidUrl
from .models import CrawlContext

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logger = logging.getLogger("url_canonicalizer")
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

RETRY_PREFIX = "https://"
SUPPORTED_SCHEMES = ("http", "https")


# ---------------------------------------------------------------------------
# Parsing helpers
# ---------------------------------------------------------------------------


def _strict_split(url: str) -> SplitResult:
    """Split ``url`` or raise ``InvalidUrl``.

    Touches ``.port`` so out-of-range or non-numeric ports surface here
    instead of deep inside a caller.
    """
    if not isinstance(url, str):
        raise InvalidUrl(repr(url), "not a string")
    text = url.strip()
    if not text:
        raise InvalidUrl(url, "empty")
    try:
        parts = urlsplit(text)
        parts.port  # noqa: B018
    except ValueError as exc:
        raise InvalidUrl(url, str(exc)) from exc
    if parts.scheme.lower() not in SUPPORTED_SCHEMES:
        raise InvalidUrl(url, f"unsupported scheme {parts.scheme!r}")
    if not parts.hostname:
        raise InvalidUrl(url, "missing host")
    if any(ch.isspace() for ch in parts.netloc):
        raise InvalidUrl(url, "whitespace in host")
    return parts


def split_url(url: str) -> SplitResult:
    """Split ``url``, retrying once with an ``https://`` prefix.

    Raises ``InvalidUrl`` when the retry also fails.
    """
    try:
        return _strict_split(url)
    except InvalidUrl as first:
        if not isinstance(url, str) or "://" in url:
            raise
        try:
            return _strict_split(RETRY_PREFIX + url.strip().lstrip("/"))
        except InvalidUrl:
            raise first


def _is_ip(hostname: str) -> bool:
    try:
        ipaddress.ip_address(hostname)
    except ValueError:
        return False
    return True


def _sorted_query(query: str) -> str:
    pieces = [piece for piece in query.split("&") if piece]
    pieces.sort(key=lambda piece: piece.split("=", 1)[0])
    return "&".join(pieces)


def _strip_trailing_slash(path: str) -> str:
    stripped = path.rstrip("/")
    return stripped or "/"


def _format_host(hostname: str) -> str:
    return f"[{hostname}]" if ":" in hostname else hostname


# ---------------------------------------------------------------------------
# Canonicalizer
# ---------------------------------------------------------------------------


class UrlCanonicalizer:
    """Canonical URL forms and root-domain comparison.

    Parameters
    ----------
    config:
        Compound public suffixes and default ports. Defaults to the built-in
        table.
    """

    def __init__(self, config: Optional[CanonicalizerConfig] = None) -> None:
        self.config = config or CanonicalizerConfig()
        self._compound = frozenset(s.lower().strip(".") for s in self.config.compound_suffixes)

    # -------------------------------------------------------------------
    # Domains
    # -------------------------------------------------------------------

    def root_domain(self, hostname: str) -> str:
        """Registrable domain: last two labels, three for compound suffixes."""
        host = (hostname or "").strip().rstrip(".").lower()
        if host.startswith("[") and host.endswith("]"):
            host = host[1:-1]
        if not host or _is_ip(host):
            return host
        labels = host.split(".")
        if len(labels) >= 3 and ".".join(labels[-2:]) in self._compound:
            return ".".join(labels[-3:])
        return ".".join(labels[-2:])

    def is_same_resource(self, url_a: str, url_b: str) -> bool:
        """True when both URLs live on the same root domain.

        Symmetric; unparseable input compares unequal to everything.
        """
        try:
            host_a = split_url(url_a).hostname or ""
            host_b = split_url(url_b).hostname or ""
        except InvalidUrl:
            return False
        return self.root_domain(host_a) == self.root_domain(host_b)

    # -------------------------------------------------------------------
    # Canonical forms
    # -------------------------------------------------------------------

    def canonicalize(self, url: str, context: Optional[CrawlContext] = None) -> str:
        """Return the canonical form of ``url``.

        Raises
        ------
        InvalidUrl
            If ``url`` has no http(s) scheme or host, or a malformed port.
        """
        return self._canonicalize_parts(_strict_split(url), context)

    def canonicalize_lenient(self, url: str, context: Optional[CrawlContext] = None) -> str:
        """Like ``canonicalize`` but retries once with an ``https://`` prefix."""
        return self._canonicalize_parts(split_url(url), context)

    def _canonicalize_parts(self, parts: SplitResult, context: Optional[CrawlContext]) -> str:
        scheme = parts.scheme.lower()
        hostname = (parts.hostname or "").rstrip(".")
        port = parts.port

        if context is not None and context.preferred_hostname:
            preferred_root = context.root_domain or self.root_domain(context.preferred_hostname)
            if self.root_domain(hostname) == preferred_root:
                hostname = context.preferred_hostname.lower().rstrip(".")
                if context.preferred_protocol:
                    scheme = context.preferred_protocol.lower()

        if port is not None and port == self.config.default_ports.get(scheme):
            port = None
        if port is not None and parts.scheme.lower() != scheme:
            # A port that was the default for the URL's own scheme goes too.
            if port == self.config.default_ports.get(parts.scheme.lower()):
                port = None

        netloc = _format_host(hostname)
        if port is not None:
            netloc = f"{netloc}:{port}"

        path = _strip_trailing_slash(parts.path or "/")
        query = _sorted_query(parts.query)
        return urlunsplit((scheme, netloc, path, query, ""))

    def normalize_url(self, url: str) -> str:
        """Light normalization: drop the fragment and non-root trailing slash.

        Host case, ports and query order are kept as observed.
        """
        parts = split_url(url)
        path = _strip_trailing_slash(parts.path or "/")
        return urlunsplit((parts.scheme, parts.netloc, path, parts.query, ""))

    # -------------------------------------------------------------------
    # Host style
    # -------------------------------------------------------------------

    @staticmethod
    def is_www_variant(hostname: str) -> bool:
        return (hostname or "").lower().startswith("www.")

    def normalize_hostname(self, hostname: str, preferred_hostname: str) -> str:
        """Rewrite ``hostname`` to the preferred one when they share a root domain."""
        if self.root_domain(hostname) == self.root_domain(preferred_hostname):
            return preferred_hostname.lower()
        return hostname.lower()

    def is_internal_link(
        self,
        link: str,
        base_url: str,
        context: Optional[CrawlContext] = None,
    ) -> bool:
        """True when ``link`` (absolute or relative to ``base_url``) stays on-site."""
        try:
            absolute = urljoin(base_url, link.strip())
            host = split_url(absolute).hostname or ""
            base_host = split_url(base_url).hostname or ""
        except (InvalidUrl, ValueError):
            return False
        target_root = self.root_domain(host)
        if context is not None and context.root_domain:
            return target_root == context.root_domain
        return target_root == self.root_domain(base_host)

    def should_merge_urls(self, url_a: str, url_b: str) -> bool:
        """True when two URLs canonicalize identically after www folding."""
        try:
            a = split_url(self.canonicalize_lenient(url_a))
            b = split_url(self.canonicalize_lenient(url_b))
        except InvalidUrl:
            return False
        host_a = (a.hostname or "").removeprefix("www.")
        host_b = (b.hostname or "").removeprefix("www.")
        return host_a == host_b and a.path == b.path and a.query == b.query

    def preferred_url(
        self,
        urls: Iterable[str],
        context: Optional[CrawlContext] = None,
    ) -> str:
        """Pick the representative of a set of equivalent URLs.

        Order of preference: ``https://`` variants, then the www style of the
        crawl context, then lower-case hosts, then the shortest string, then
        lexicographic order.
        """
        candidates: List[str] = sorted(set(urls))
        if not candidates:
            raise ValueError("preferred_url() needs at least one URL")

        https = [u for u in candidates if u.lower().startswith("https://")]
        if https:
            candidates = https

        if context is not None and context.preferred_hostname:
            want_www = context.prefers_www
            styled = [
                u for u in candidates
                if self.is_www_variant(urlsplit(u).hostname or "") == want_www
            ]
            if styled:
                candidates = styled

        lower_host = [u for u in candidates if not any(c.isupper() for c in urlsplit(u).netloc)]
        if lower_host:
            candidates = lower_host

        return min(candidates, key=lambda u: (len(u), u))


# ---------------------------------------------------------------------------
# Module-level helpers
# ---------------------------------------------------------------------------

_default = UrlCanonicalizer()


def canonicalize(url: str, context: Optional[CrawlContext] = None) -> str:
    return _default.canonicalize(url, context)


def canonicalize_lenient(url: str, context: Optional[CrawlContext] = None) -> str:
    return _default.canonicalize_lenient(url, context)


def root_domain(hostname: str) -> str:
    return _default.root_domain(hostname)


def is_same_resource(url_a: str, url_b: str) -> bool:
    return _default.is_same_resource(url_a, url_b)


def normalize_url(url: str) -> str:
    return _default.normalize_url(url)


def is_www_variant(hostname: str) -> bool:
    return UrlCanonicalizer.is_www_variant(hostname)


def preferred_url(urls: Iterable[str], context: Optional[CrawlContext] = None) -> str:
    return _default.preferred_url(urls, context)


def is_internal_link(link: str, base_url: str, context: Optional[CrawlContext] = None) -> bool:
    return _default.is_internal_link(link, base_url, context)


def should_merge_urls(url_a: str, url_b: str) -> bool:
    return _default.should_merge_urls(url_a, url_b)
