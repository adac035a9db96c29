"""
Configuration — SiteAudit Core
==============================

Immutable lookup tables and thresholds for every component of the core:
compound public suffixes, issue-message synonym rules, duplicate-conflict
heuristics, link-graph thresholds and the category scoring tables.

Defaults are baked in. A JSON or YAML file may overlay any subset of them,
either passed explicitly or named by the ``SITEAUDIT_CONFIG`` environment
variable. Components receive their section at construction and never read
module state at call time.

Usage:
    from siteaudit.config import load_config

    config = load_config("configs/siteaudit.yaml")
    engine = ScoringEngine(config.scoring)
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from .errors import ConfigError
from .models import IssueCategory, Severity

logger = logging.getLogger("siteaudit.config")

# ---------------------------------------------------------------------------
# Paths & Constants
# ---------------------------------------------------------------------------

CONFIG_ENV_VAR = "SITEAUDIT_CONFIG"

DEFAULT_COMPOUND_SUFFIXES: Tuple[str, ...] = (
    "co.uk", "org.uk", "ac.uk", "gov.uk", "me.uk",
    "com.au", "net.au", "org.au",
    "co.jp", "co.nz", "co.za", "co.in",
    "com.br", "com.mx", "com.ar", "com.tr", "com.cn", "com.sg",
)

DEFAULT_SYNONYM_RULES: Tuple[Tuple[Tuple[str, ...], str], ...] = (
    (("title tag", "title element", "page title", "title"), "title"),
    (("meta description", "meta desc"), "meta description"),
    (("missing", "not found", "lacks", "without", "no"), "missing"),
    (("h1 heading", "h1 tag", "h1"), "h1"),
    (("alt attribute", "alt text", "alt tag"), "alt text"),
)


# ---------------------------------------------------------------------------
# Sections
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CanonicalizerConfig:
    compound_suffixes: Tuple[str, ...] = DEFAULT_COMPOUND_SUFFIXES
    default_ports: Dict[str, int] = field(
        default_factory=lambda: {"http": 80, "https": 443}
    )


@dataclass(frozen=True)
class IssueNormalizerConfig:
    # Ordered (alternatives, canonical token) pairs, matched at the start of
    # the message and re-applied to the remainder until nothing matches.
    synonym_rules: Tuple[Tuple[Tuple[str, ...], str], ...] = DEFAULT_SYNONYM_RULES


@dataclass(frozen=True)
class DuplicateConfig:
    # A declared canonical on the same root domain is a "related category"
    # link when the paths share this many segments and the canonical is at
    # most this much deeper than the page.
    min_shared_segments: int = 1
    max_extra_depth: int = 1


@dataclass(frozen=True)
class GraphConfig:
    hub_min_outgoing: int = 5
    authority_min_incoming: int = 3
    top_n: int = 10
    authority_strategy: str = "path"  # "path" or "iterative"
    # None walks every simple path; an int truncates the walk at that depth.
    path_max_depth: Optional[int] = None
    iterative_passes: int = 3
    # Above this many edges, or once the walks pop this many stack frames in
    # total, the path strategy falls back to iterative.
    path_edge_budget: int = 2000
    path_work_budget: Optional[int] = 200_000


@dataclass(frozen=True)
class ScoreBucket:
    """A group of related issues that share one capped deduction.

    ``attribute`` names a page-derived rate (see ``scoring.PAGE_ATTRIBUTES``)
    whose ``attribute_weight``-scaled value is used when it exceeds the
    issue-based deduction.
    """

    name: str
    keywords: Tuple[str, ...]
    cap: float
    attribute: str = ""
    attribute_weight: float = 0.0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScoreBucket":
        return cls(
            name=str(data["name"]),
            keywords=tuple(data.get("keywords") or ()),
            cap=float(data["cap"]),
            attribute=str(data.get("attribute", "")),
            attribute_weight=float(data.get("attribute_weight", 0.0)),
        )


def _default_buckets() -> Dict[IssueCategory, Tuple[ScoreBucket, ...]]:
    return {
        IssueCategory.TECHNICAL: (
            ScoreBucket("security-headers", ("security", "header", "csp", "hsts"), 20),
            ScoreBucket("mixed-content", ("mixed-content", "mixed content"), 20),
            ScoreBucket("https-redirects", ("https", "redirect", "ssl"), 15),
            ScoreBucket("schema", ("schema", "structured data"), 15),
            ScoreBucket("canonicals", ("canonical", "duplicate url"), 10),
            ScoreBucket(
                "broken-pages", ("broken", "error status", "404", "5xx"), 40,
                attribute="error_rate", attribute_weight=40,
            ),
            ScoreBucket("other", (), 25),
        ),
        IssueCategory.ON_PAGE: (
            ScoreBucket(
                "title", ("title",), 25,
                attribute="missing_title_rate", attribute_weight=25,
            ),
            ScoreBucket(
                "meta-description", ("meta",), 20,
                attribute="missing_meta_rate", attribute_weight=20,
            ),
            ScoreBucket(
                "headings", ("h1", "heading"), 15,
                attribute="missing_h1_rate", attribute_weight=15,
            ),
            ScoreBucket("internal-linking", ("internal-link", "internal link", "orphan"), 15),
            ScoreBucket("duplicate-content", ("duplicate",), 15),
            ScoreBucket("url-structure", ("url",), 10),
            ScoreBucket("other", (), 20),
        ),
        IssueCategory.CONTENT: (
            ScoreBucket(
                "thin-content", ("thin", "word count"), 25,
                attribute="thin_rate", attribute_weight=25,
            ),
            ScoreBucket("readability", ("readability", "flesch", "reading ease", "sentence"), 30),
            ScoreBucket("depth", ("depth", "comprehensive"), 25),
            ScoreBucket("freshness", ("fresh", "outdated", "stale"), 15),
            ScoreBucket("keyword-usage", ("keyword",), 10),
            ScoreBucket("other", (), 20),
        ),
        IssueCategory.ACCESSIBILITY: (
            ScoreBucket(
                "alt-text", ("alt",), 40,
                attribute="missing_alt_rate", attribute_weight=40,
            ),
            ScoreBucket("aria", ("aria",), 20),
            ScoreBucket("contrast", ("contrast",), 20),
            ScoreBucket("keyboard", ("keyboard", "focus", "tabindex"), 20),
            ScoreBucket("form-labels", ("label",), 20),
            ScoreBucket(
                "viewport", ("viewport",), 10,
                attribute="missing_viewport_rate", attribute_weight=10,
            ),
            ScoreBucket("other", (), 20),
        ),
        IssueCategory.PERFORMANCE: (
            ScoreBucket(
                "core-web-vitals",
                ("core web vital", "web vitals", "lcp", "fcp", "cls", "ttfb", "tbt"),
                50, attribute="cwv_deficit", attribute_weight=50,
            ),
            ScoreBucket("page-size", ("size", "image", "weight"), 20),
            ScoreBucket("compression", ("compression", "gzip", "brotli"), 15),
            ScoreBucket("caching", ("cache", "caching"), 15),
            ScoreBucket("other", (), 20),
        ),
    }


@dataclass(frozen=True)
class ScoringConfig:
    severity_weights: Dict[Severity, float] = field(
        default_factory=lambda: {Severity.HIGH: 15.0, Severity.MEDIUM: 6.0, Severity.LOW: 3.0}
    )
    buckets: Dict[IssueCategory, Tuple[ScoreBucket, ...]] = field(
        default_factory=_default_buckets
    )
    robots_txt_penalty: float = 10.0
    sitemap_penalty: float = 10.0
    thin_word_count: int = 300

    # Category ceiling while High issues remain: max(floor, base - n * step).
    ceiling_base: float = 95.0
    ceiling_step: float = 5.0
    ceiling_floor: float = 60.0

    accessibility_check_buckets: Tuple[str, ...] = (
        "alt-text", "aria", "contrast", "keyboard", "form-labels",
    )
    accessibility_min_check_types: int = 2
    accessibility_shallow_ceiling: float = 85.0

    overall_weights: Dict[IssueCategory, float] = field(
        default_factory=lambda: {
            IssueCategory.TECHNICAL: 0.35,
            IssueCategory.ON_PAGE: 0.25,
            IssueCategory.CONTENT: 0.25,
            IssueCategory.ACCESSIBILITY: 0.15,
        }
    )
    compress_scores: bool = True
    compress_floor: float = 10.0
    compress_ceiling: float = 90.0
    overall_min: float = 5.0
    overall_max: float = 95.0

    neutral_score: float = 50.0
    neutral_cwv_subscore: float = 70.0


@dataclass(frozen=True)
class SiteAuditConfig:
    canonicalizer: CanonicalizerConfig = field(default_factory=CanonicalizerConfig)
    issues: IssueNormalizerConfig = field(default_factory=IssueNormalizerConfig)
    duplicates: DuplicateConfig = field(default_factory=DuplicateConfig)
    graph: GraphConfig = field(default_factory=GraphConfig)
    scoring: ScoringConfig = field(default_factory=ScoringConfig)


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


def _read_file(path: Path) -> Dict[str, Any]:
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"Cannot read config file: {exc}", path=str(path)) from exc

    if path.suffix.lower() in (".yaml", ".yml"):
        try:
            import yaml
        except ImportError:
            raise ConfigError(
                "PyYAML is required for YAML config. Install with: pip install pyyaml",
                path=str(path),
            )
        try:
            data = yaml.safe_load(content)
        except yaml.YAMLError as exc:
            raise ConfigError(f"Invalid YAML in {path}: {exc}", path=str(path)) from exc
    else:
        try:
            data = json.loads(content)
        except json.JSONDecodeError as exc:
            raise ConfigError(f"Invalid JSON in {path}: {exc}", path=str(path)) from exc

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config root must be a mapping: {path}", path=str(path))
    return data


def _overlay(section: Any, overrides: Dict[str, Any], name: str) -> Any:
    """Return ``section`` with scalar and tuple fields replaced from ``overrides``."""
    known = {f.name for f in fields(section)}
    unknown = set(overrides) - known
    if unknown:
        raise ConfigError(f"Unknown keys in [{name}]: {', '.join(sorted(unknown))}")
    changes: Dict[str, Any] = {}
    for key, value in overrides.items():
        current = getattr(section, key)
        if isinstance(current, tuple) and isinstance(value, list):
            value = tuple(tuple(v) if isinstance(v, list) else v for v in value)
        changes[key] = value
    return replace(section, **changes)


def _overlay_scoring(section: ScoringConfig, overrides: Dict[str, Any]) -> ScoringConfig:
    overrides = dict(overrides)
    changes: Dict[str, Any] = {}
    try:
        if "severity_weights" in overrides:
            weights = dict(section.severity_weights)
            for key, value in overrides.pop("severity_weights").items():
                weights[Severity.parse(key)] = float(value)
            changes["severity_weights"] = weights
        if "overall_weights" in overrides:
            weights = {}
            for key, value in overrides.pop("overall_weights").items():
                weights[IssueCategory.parse(key)] = float(value)
            changes["overall_weights"] = weights
        if "buckets" in overrides:
            buckets = dict(section.buckets)
            for key, rows in overrides.pop("buckets").items():
                buckets[IssueCategory.parse(key)] = tuple(
                    ScoreBucket.from_dict(row) for row in rows
                )
            changes["buckets"] = buckets
    except (KeyError, TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid [scoring] table: {exc}") from exc
    return _overlay(replace(section, **changes), overrides, "scoring")


def _overlay_issues(section: IssueNormalizerConfig, overrides: Dict[str, Any]) -> IssueNormalizerConfig:
    rules = overrides.get("synonym_rules")
    if rules is None:
        return _overlay(section, overrides, "issues")
    try:
        parsed = tuple(
            (tuple(rule["match"]), str(rule["token"])) for rule in rules
        )
    except (KeyError, TypeError) as exc:
        raise ConfigError(
            f"Invalid [issues] synonym_rules, expected match/token pairs: {exc}"
        ) from exc
    return replace(section, synonym_rules=parsed)


def config_from_dict(data: Dict[str, Any]) -> SiteAuditConfig:
    """Build a config by overlaying ``data`` on the defaults."""
    base = SiteAuditConfig()
    unknown = set(data) - {f.name for f in fields(base)}
    if unknown:
        raise ConfigError(f"Unknown config sections: {', '.join(sorted(unknown))}")
    config = SiteAuditConfig(
        canonicalizer=_overlay(base.canonicalizer, data.get("canonicalizer") or {}, "canonicalizer"),
        issues=_overlay_issues(base.issues, data.get("issues") or {}),
        duplicates=_overlay(base.duplicates, data.get("duplicates") or {}, "duplicates"),
        graph=_overlay(base.graph, data.get("graph") or {}, "graph"),
        scoring=_overlay_scoring(base.scoring, data.get("scoring") or {}),
    )
    if config.graph.authority_strategy not in ("path", "iterative"):
        raise ConfigError(
            f"Unknown authority_strategy: {config.graph.authority_strategy!r}"
        )
    return config


def load_config(path: Optional[str] = None) -> SiteAuditConfig:
    """Load configuration from ``path``, ``$SITEAUDIT_CONFIG``, or defaults.

    Parameters
    ----------
    path:
        JSON or YAML file (``.yaml`` / ``.yml``). Relative paths resolve
        against the working directory.

    Returns
    -------
    SiteAuditConfig
    """
    source = path or os.environ.get(CONFIG_ENV_VAR)
    if not source:
        return SiteAuditConfig()
    config_path = Path(source)
    logger.debug("Loading config from %s", config_path)
    return config_from_dict(_read_file(config_path))


# ---------------------------------------------------------------------------
# Singleton
# ---------------------------------------------------------------------------

_config_instance: Optional[SiteAuditConfig] = None


def get_config() -> SiteAuditConfig:
    """Return the cached default configuration (honours ``$SITEAUDIT_CONFIG``)."""
    global _config_instance
    if _config_instance is None:
        _config_instance = load_config()
    return _config_instance
