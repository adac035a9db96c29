"""
Site Audit Core — Pipeline & CLI
================================

Runs the full core over one crawl snapshot: page deduplication, the
valid/error split, duplicate-URL analysis and link-graph construction on
valid pages, generated issues (broken pages, duplicate URLs, canonical
conflicts), issue deduplication and category scoring. Returns one immutable
``AuditBundle`` for report assembly.

Stateless: a single ``SiteAuditCore`` may serve concurrent callers since it
only holds its immutable configuration.

Usage:
    from siteaudit.audit_core import get_core

    core = get_core()
    bundle = core.run(pages, issues, SiteWideSignals(sitemap_exists=False))
    print(bundle.scores.overall_score)

CLI:
    python -m siteaudit.audit_core analyze --input crawl.json
    python -m siteaudit.audit_core analyze --input crawl.json --json
    python -m siteaudit.audit_core graph --input crawl.json
    python -m siteaudit.audit_core duplicates --input crawl.json
    python -m siteaudit.audit_core canonicalize "http://WWW.Example.com/a/?b=1&a=2"

Crawl snapshot format (JSON or YAML):
    {
        "pages": [{"url": "...", "status_code": 200, "word_count": 812, ...}],
        "issues": [{"category": "Technical", "severity": "High", "message": "..."}],
        "site_wide": {"robots_txt_exists": true, "sitemap_exists": false},
        "context": {"preferred_hostname": "www.example.com", "preferred_protocol": "https"},
        "root_url": "https://www.example.com/"
    }
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from .config import SiteAuditConfig, get_config, load_config
from .duplicate_urls import DuplicateUrlAnalysis, DuplicateUrlAuditor, generate_duplicate_url_issues
from .errors import ConfigError, InvalidUrl
from .issue_dedup import IssueNormalizer, IssueSummary, dedupe_issues, sort_issues_by_priority, summarize_issues
from .link_graph import LinkGraphBuilder, PageGraph, linking_recommendations
from .models import CategoryScores, CrawlContext, CrawledPage, Issue, SiteWideSignals
from .page_dedup import broken_pages_issue, deduplicate_pages, filter_valid_pages
from .scoring import ScoringEngine
from .url_canonicalizer import UrlCanonicalizer

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logger = logging.getLogger("audit_core")
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


# ===================================================================
# RESULT BUNDLE
# ===================================================================


@dataclass(frozen=True)
class AuditBundle:
    scores: CategoryScores
    graph: PageGraph
    duplicates: DuplicateUrlAnalysis
    issues: Tuple[Issue, ...]
    pages: Tuple[CrawledPage, ...]
    error_pages: Tuple[CrawledPage, ...]
    context: Optional[CrawlContext] = None
    invalid_url_count: int = 0

    @property
    def summary(self) -> IssueSummary:
        return summarize_issues(self.issues)

    @property
    def recommendations(self) -> List[str]:
        return linking_recommendations(self.graph)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scores": self.scores.to_dict(),
            "graph": self.graph.to_dict(),
            "duplicates": self.duplicates.to_dict(),
            "issues": [i.to_dict() for i in self.issues],
            "summary": self.summary.to_dict(),
            "recommendations": self.recommendations,
            "page_count": len(self.pages),
            "error_pages": [p.url for p in self.error_pages],
            "context": self.context.to_dict() if self.context else None,
            "invalid_url_count": self.invalid_url_count,
        }


# ===================================================================
# CORE
# ===================================================================


class SiteAuditCore:
    """Wires the components together around one configuration.

    Parameters
    ----------
    config:
        Full configuration; ``get_config()`` when omitted.
    """

    def __init__(self, config: Optional[SiteAuditConfig] = None) -> None:
        self.config = config or get_config()
        self.canonicalizer = UrlCanonicalizer(self.config.canonicalizer)
        self.duplicate_auditor = DuplicateUrlAuditor(self.config.duplicates, self.canonicalizer)
        self.graph_builder = LinkGraphBuilder(self.config.graph, self.canonicalizer)
        self.normalizer = IssueNormalizer(self.config.issues)
        self.scoring = ScoringEngine(self.config.scoring)

    def derive_context(self, pages: Sequence[CrawledPage]) -> Optional[CrawlContext]:
        """Context from the first successfully fetched, parseable page."""
        for page in pages:
            if not 200 <= page.status_code < 400:
                continue
            try:
                return CrawlContext.from_url(page.url)
            except InvalidUrl:
                continue
        return None

    def run(
        self,
        pages: Iterable[CrawledPage],
        issues: Iterable[Issue] = (),
        site_wide: Optional[SiteWideSignals] = None,
        context: Optional[CrawlContext] = None,
        root_url: Optional[str] = None,
    ) -> AuditBundle:
        """Run every stage and return the bundle.

        Parameters
        ----------
        pages:
            Crawled pages in crawl order.
        issues:
            Raw analyzer issues, any order.
        site_wide:
            robots.txt / sitemap flags.
        context:
            Preferred host/protocol; derived from the first fetched page when
            omitted.
        root_url:
            Crawl root for orphan exemption; first valid page when omitted.

        Returns
        -------
        AuditBundle
        """
        page_list = list(pages)
        site_wide = site_wide or SiteWideSignals()
        if context is None:
            context = self.derive_context(page_list)

        # Grouped without the context so www and protocol variants survive
        # for the duplicate-URL audit.
        unique = deduplicate_pages(page_list, None, self.canonicalizer)
        valid, errored = filter_valid_pages(unique)

        duplicates = self.duplicate_auditor.analyze(valid, context)
        graph = self.graph_builder.build(valid, root_url=root_url, context=context)

        generated: List[Issue] = []
        broken = broken_pages_issue(errored)
        if broken is not None:
            generated.append(broken)
        generated.extend(generate_duplicate_url_issues(duplicates))

        all_issues = dedupe_issues(list(issues) + generated, self.normalizer)
        scores = self.scoring.score(all_issues, unique, site_wide)

        invalid = max(duplicates.invalid_url_count, graph.invalid_url_count)
        if invalid:
            logger.warning("%d page URLs could not be parsed and were excluded", invalid)

        return AuditBundle(
            scores=scores,
            graph=graph,
            duplicates=duplicates,
            issues=tuple(sort_issues_by_priority(all_issues)),
            pages=tuple(valid),
            error_pages=tuple(errored),
            context=context,
            invalid_url_count=invalid,
        )


# ---------------------------------------------------------------------------
# Snapshot loading
# ---------------------------------------------------------------------------


def load_snapshot(path: str) -> Dict[str, Any]:
    """Read a crawl snapshot (JSON, or YAML by extension) into model objects."""
    file_path = Path(path)
    content = file_path.read_text(encoding="utf-8")
    if file_path.suffix.lower() in (".yaml", ".yml"):
        try:
            import yaml
        except ImportError:
            raise ValueError("PyYAML is required for YAML snapshots. Install with: pip install pyyaml")
        data = yaml.safe_load(content) or {}
    else:
        data = json.loads(content)

    context = data.get("context")
    return {
        "pages": [CrawledPage.from_dict(p) for p in data.get("pages", [])],
        "issues": [Issue.from_dict(i) for i in data.get("issues", [])],
        "site_wide": SiteWideSignals.from_dict(data.get("site_wide") or {}),
        "context": CrawlContext.from_dict(context) if context else None,
        "root_url": data.get("root_url"),
    }


# ---------------------------------------------------------------------------
# Singleton
# ---------------------------------------------------------------------------

_core_instance: Optional[SiteAuditCore] = None


def get_core() -> SiteAuditCore:
    """Return the singleton SiteAuditCore instance."""
    global _core_instance
    if _core_instance is None:
        _core_instance = SiteAuditCore()
    return _core_instance


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="siteaudit",
        description="Site graph and scoring engine: canonicalize URLs, "
        "build link graphs and score crawl snapshots.",
    )
    parser.add_argument("--config", type=str, default=None, help="JSON/YAML config file")
    sub = parser.add_subparsers(dest="command", help="Command to run")

    analyze_p = sub.add_parser("analyze", help="Score a crawl snapshot")
    analyze_p.add_argument("--input", "-i", type=str, required=True, help="Snapshot file")
    analyze_p.add_argument("--json", action="store_true", help="Print the full bundle as JSON")

    graph_p = sub.add_parser("graph", help="Show link graph classifications")
    graph_p.add_argument("--input", "-i", type=str, required=True, help="Snapshot file")

    dup_p = sub.add_parser("duplicates", help="Show duplicate URL groups")
    dup_p.add_argument("--input", "-i", type=str, required=True, help="Snapshot file")

    canon_p = sub.add_parser("canonicalize", help="Canonicalize one or more URLs")
    canon_p.add_argument("urls", nargs="+", help="URLs to canonicalize")
    canon_p.add_argument(
        "--preferred-host", type=str, default=None,
        help="Preferred hostname (e.g. www.example.com)",
    )
    canon_p.add_argument(
        "--preferred-protocol", type=str, default="https", choices=["http", "https"],
    )

    return parser


def _print_analysis(bundle: AuditBundle) -> None:
    s = bundle.scores
    print(f"\n  Overall score: {s.overall_score:.0f}/100")
    print(f"  {'-' * 36}")
    for label, value in (
        ("Technical", s.technical),
        ("On-page", s.on_page),
        ("Content", s.content),
        ("Accessibility", s.accessibility),
        ("Performance", s.performance),
    ):
        print(f"  {label:<16s} {value:6.1f}")

    print(f"\n  Pages: {len(bundle.pages)} valid, {len(bundle.error_pages)} errored")
    if bundle.invalid_url_count:
        print(f"  Unparseable URLs excluded: {bundle.invalid_url_count}")

    print(f"\n  Issues ({len(bundle.issues)}):")
    for issue in bundle.issues[:20]:
        pages = len(issue.affected_pages)
        print(
            f"    [{issue.severity.value:6s}] {issue.category.value:<13s} "
            f"{issue.message} ({pages} pages)"
        )

    tips = bundle.recommendations
    if tips:
        print("\n  Linking recommendations:")
        for tip in tips:
            print(f"    - {tip}")


def _print_graph(graph: PageGraph) -> None:
    print(f"\n  Nodes: {len(graph.nodes)}   Edges: {len(graph.edges)}   Root: {graph.root_url}")
    ranked = sorted(graph.nodes, key=lambda n: (-n.authority_score, n.canonical_url))
    print(f"\n  {'Authority':>9s}  {'In':>4s}  {'Out':>4s}  URL")
    for node in ranked[:25]:
        print(
            f"  {node.authority_score:9.2f}  {node.incoming_link_count:4d}  "
            f"{node.outgoing_link_count:4d}  {node.canonical_url}"
        )
    for label, urls in (
        ("Orphan pages", graph.orphan_pages),
        ("Hub pages", graph.hub_pages),
        ("Authority pages", graph.authority_pages),
        ("Isolated pages", graph.isolated_pages),
        ("Unreachable pages", graph.unreachable_pages),
    ):
        print(f"\n  {label} ({len(urls)}):")
        for url in urls:
            print(f"    {url}")


def _print_duplicates(analysis: DuplicateUrlAnalysis) -> None:
    print(
        f"\n  Duplicate groups: {len(analysis.groups)}   "
        f"Duplicate URLs: {analysis.total_duplicate_count}   "
        f"Canonical conflicts: {analysis.canonical_conflict_count} "
        f"(+{analysis.related_canonical_conflict_count} related)"
    )
    for group in analysis.groups:
        print(f"\n  [{group.type.value}] {group.preferred}")
        for dup in group.duplicates:
            print(f"      {dup}")
        print(f"    {group.recommendation}")
    for conflict in analysis.canonical_conflicts:
        kind = "related" if conflict.related else "conflict"
        print(f"\n  [{kind}] {conflict.page_url} -> {conflict.declared} ({conflict.reason})")


def _run_cli(args: argparse.Namespace) -> int:
    core = SiteAuditCore(load_config(args.config)) if args.config else get_core()

    if args.command == "canonicalize":
        context = None
        if args.preferred_host:
            context = CrawlContext(
                preferred_hostname=args.preferred_host.lower(),
                preferred_protocol=args.preferred_protocol,
                root_domain=core.canonicalizer.root_domain(args.preferred_host),
            )
        status = 0
        for url in args.urls:
            try:
                print(core.canonicalizer.canonicalize_lenient(url, context))
            except InvalidUrl as exc:
                print(f"error: {exc}", file=sys.stderr)
                status = 1
        return status

    snapshot = load_snapshot(args.input)

    if args.command == "analyze":
        bundle = core.run(**snapshot)
        if args.json:
            print(json.dumps(bundle.to_dict(), indent=2))
        else:
            _print_analysis(bundle)

    elif args.command == "graph":
        context = snapshot["context"] or core.derive_context(snapshot["pages"])
        valid, _ = filter_valid_pages(deduplicate_pages(snapshot["pages"], None, core.canonicalizer))
        _print_graph(core.graph_builder.build(valid, root_url=snapshot["root_url"], context=context))

    elif args.command == "duplicates":
        context = snapshot["context"] or core.derive_context(snapshot["pages"])
        valid, _ = filter_valid_pages(deduplicate_pages(snapshot["pages"], None, core.canonicalizer))
        _print_duplicates(core.duplicate_auditor.analyze(valid, context))

    return 0


def main(argv: Optional[Sequence[str]] = None) -> None:
    """CLI entry point."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    parser = _build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return

    try:
        status = _run_cli(args)
    except KeyboardInterrupt:
        print("\nAborted.")
        return
    except (ConfigError, OSError, ValueError) as exc:
        logger.error("Command failed: %s", exc)
        raise SystemExit(1)
    if status:
        raise SystemExit(status)


if __name__ == "__main__":
    main()
