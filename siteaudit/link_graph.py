"""
Link Graph Builder — SiteAudit Core
===================================

Builds a directed internal-link graph over deduplicated crawled pages,
counts incoming and outgoing links per page, propagates a link-authority
signal, and classifies pages as orphan, hub, authority, isolated or
unreachable.

Nodes are keyed by a graph-specific form (scheme ignored, ``www.`` dropped,
trailing slash trimmed except at the root) so link matching does not depend
on the crawl context used by the general canonicalizer.

Authority:
    authority(n) = in(n) + sum(authority(src) / max(1, out(src)) for src -> n)

evaluated once per node as a single bounded pass, not iterated to a fixed
point. The default ``path`` strategy walks predecessors carrying the set of
nodes already on the current path (a repeat contributes 0), optionally cut
off at ``path_max_depth``. Graphs over the edge budget, or whose walks pop
more than ``path_work_budget`` stack frames, switch to the ``iterative``
strategy, a fixed number of synchronous passes over the adjacency lists.
Both terminate on any finite graph, cycles included.

Usage:
    from siteaudit.link_graph import build_graph, linking_recommendations

    graph = build_graph(pages, root_url="https://example.com/")
    print(graph.orphan_pages, graph.hub_pages)
    for tip in linking_recommendations(graph):
        print(tip)

CLI:
    python -m siteaudit.audit_core graph --input crawl.json
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Sequence, Set, Tuple
from urllib.parse import urljoin, urlunsplit

from .config import GraphConfig
from .errors import InvalidUrl
from .models import CrawlContext, CrawledPage
from .url_canonicalizer import UrlCanonicalizer, split_url

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logger = logging.getLogger("link_graph")
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

MAX_LISTED_RECOMMENDATION_PAGES = 5
AUTHORITY_PRECISION = 4


# ===================================================================
# GRAPH TYPES
# ===================================================================


@dataclass(frozen=True)
class PageGraphNode:
    canonical_url: str
    title: str
    incoming_link_count: int
    outgoing_link_count: int
    authority_score: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "canonical_url": self.canonical_url,
            "title": self.title,
            "incoming_link_count": self.incoming_link_count,
            "outgoing_link_count": self.outgoing_link_count,
            "authority_score": self.authority_score,
        }


@dataclass(frozen=True)
class GraphEdge:
    source: str
    target: str
    is_contextual: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {"from": self.source, "to": self.target, "is_contextual": self.is_contextual}


@dataclass(frozen=True)
class PageGraph:
    nodes: Tuple[PageGraphNode, ...] = ()
    edges: Tuple[GraphEdge, ...] = ()
    orphan_pages: Tuple[str, ...] = ()
    hub_pages: Tuple[str, ...] = ()
    authority_pages: Tuple[str, ...] = ()
    isolated_pages: Tuple[str, ...] = ()
    unreachable_pages: Tuple[str, ...] = ()
    root_url: Optional[str] = None
    invalid_url_count: int = 0

    def node(self, url: str) -> Optional[PageGraphNode]:
        """Look up a node by canonical URL or by any URL with the same graph key."""
        for node in self.nodes:
            if node.canonical_url == url:
                return node
        try:
            key = graph_key(url)
        except InvalidUrl:
            return None
        for node in self.nodes:
            if graph_key(node.canonical_url) == key:
                return node
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "nodes": [n.to_dict() for n in self.nodes],
            "edges": [e.to_dict() for e in self.edges],
            "orphan_pages": list(self.orphan_pages),
            "hub_pages": list(self.hub_pages),
            "authority_pages": list(self.authority_pages),
            "isolated_pages": list(self.isolated_pages),
            "unreachable_pages": list(self.unreachable_pages),
            "root_url": self.root_url,
            "invalid_url_count": self.invalid_url_count,
        }


# ---------------------------------------------------------------------------
# Graph key
# ---------------------------------------------------------------------------


def graph_key(url: str) -> str:
    """Scheme-less, www-less key used to match links to pages.

    Raises ``InvalidUrl`` when the URL cannot be parsed even after the
    ``https://`` retry.
    """
    parts = split_url(url)
    host = (parts.hostname or "").rstrip(".")
    if host.startswith("www."):
        host = host[4:]
    if parts.port is not None:
        host = f"{host}:{parts.port}"
    path = parts.path or "/"
    if path != "/":
        path = path.rstrip("/") or "/"
    return urlunsplit(("", host, path, parts.query, "")).lstrip("/")


# ===================================================================
# BUILDER
# ===================================================================


class LinkGraphBuilder:
    """Builds ``PageGraph`` values from crawled pages.

    Parameters
    ----------
    config:
        Classification thresholds and the authority strategy.
    canonicalizer:
        Used for node ``canonical_url`` values.
    """

    def __init__(
        self,
        config: Optional[GraphConfig] = None,
        canonicalizer: Optional[UrlCanonicalizer] = None,
    ) -> None:
        self.config = config or GraphConfig()
        self.canonicalizer = canonicalizer or UrlCanonicalizer()

    def build(
        self,
        pages: Iterable[CrawledPage],
        root_url: Optional[str] = None,
        context: Optional[CrawlContext] = None,
    ) -> PageGraph:
        """Build the graph.

        Parameters
        ----------
        pages:
            Deduplicated pages; the first page is the crawl root unless
            ``root_url`` is given.
        root_url:
            URL of the crawl root, exempt from orphan classification.
        context:
            Crawl context applied to node ``canonical_url`` values.

        Returns
        -------
        PageGraph
        """
        page_list = list(pages)
        invalid = 0

        # Nodes, first page per key wins.
        keys: List[str] = []
        page_of: Dict[str, CrawledPage] = {}
        canonical_of: Dict[str, str] = {}
        for page in page_list:
            try:
                key = graph_key(page.url)
                canonical = self.canonicalizer.canonicalize_lenient(page.url, context)
            except InvalidUrl as exc:
                logger.warning("Excluding unparseable URL from link graph: %s", exc)
                invalid += 1
                continue
            if key in page_of:
                continue
            keys.append(key)
            page_of[key] = page
            canonical_of[key] = canonical

        # Edges, one per distinct (from, to) pair.
        successors: Dict[str, List[str]] = {k: [] for k in keys}
        predecessors: Dict[str, List[str]] = {k: [] for k in keys}
        edges: List[GraphEdge] = []
        for key in keys:
            page = page_of[key]
            if page.outbound_internal_links is None:
                continue
            contextual = self._resolve_all(page.url, page.contextual_links)
            seen_targets: Set[str] = set()
            for link in page.outbound_internal_links:
                target = self._resolve(page.url, link)
                if target is None or target == key or target not in page_of:
                    continue
                if target in seen_targets:
                    continue
                seen_targets.add(target)
                successors[key].append(target)
                predecessors[target].append(key)
                edges.append(GraphEdge(
                    source=canonical_of[key],
                    target=canonical_of[target],
                    is_contextual=target in contextual,
                ))

        incoming = {k: len(predecessors[k]) for k in keys}
        outgoing: Dict[str, int] = {}
        for key in keys:
            page = page_of[key]
            if page.outbound_internal_links is None:
                outgoing[key] = max(0, int(page.internal_link_count))
            else:
                outgoing[key] = len(successors[key])

        authority = self._authority(keys, predecessors, incoming, outgoing, len(edges))

        nodes = tuple(
            PageGraphNode(
                canonical_url=canonical_of[k],
                title=page_of[k].title,
                incoming_link_count=incoming[k],
                outgoing_link_count=outgoing[k],
                authority_score=round(authority[k], AUTHORITY_PRECISION),
            )
            for k in keys
        )

        root_key = self._root_key(keys, root_url)
        graph = PageGraph(
            nodes=nodes,
            edges=tuple(edges),
            orphan_pages=tuple(
                canonical_of[k] for k in keys if incoming[k] == 0 and k != root_key
            ),
            hub_pages=self._top(keys, outgoing, self.config.hub_min_outgoing, canonical_of),
            authority_pages=self._top(keys, incoming, self.config.authority_min_incoming, canonical_of),
            isolated_pages=tuple(
                canonical_of[k] for k in keys if incoming[k] == 0 and outgoing[k] == 0
            ),
            unreachable_pages=self._unreachable(keys, successors, root_key, canonical_of),
            root_url=canonical_of.get(root_key) if root_key else None,
            invalid_url_count=invalid,
        )
        logger.info(
            "Built link graph: %d nodes, %d edges, %d orphans, %d hubs",
            len(nodes), len(edges), len(graph.orphan_pages), len(graph.hub_pages),
        )
        return graph

    # -------------------------------------------------------------------
    # Link resolution
    # -------------------------------------------------------------------

    @staticmethod
    def _resolve(base_url: str, link: str) -> Optional[str]:
        if not isinstance(link, str) or not link.strip():
            return None
        try:
            return graph_key(urljoin(base_url, link.strip()))
        except (InvalidUrl, ValueError):
            return None

    def _resolve_all(self, base_url: str, links: Sequence[str]) -> Set[str]:
        resolved = (self._resolve(base_url, link) for link in links)
        return {key for key in resolved if key is not None}

    def _root_key(self, keys: Sequence[str], root_url: Optional[str]) -> Optional[str]:
        if root_url:
            try:
                return graph_key(root_url)
            except InvalidUrl:
                logger.warning("Root URL %r is not parseable; falling back to first page", root_url)
        return keys[0] if keys else None

    # -------------------------------------------------------------------
    # Authority
    # -------------------------------------------------------------------

    def _authority(
        self,
        keys: Sequence[str],
        predecessors: Dict[str, List[str]],
        incoming: Dict[str, int],
        outgoing: Dict[str, int],
        edge_count: int,
    ) -> Dict[str, float]:
        strategy = self.config.authority_strategy
        if strategy == "path" and edge_count > self.config.path_edge_budget:
            logger.info(
                "Edge count %d exceeds path budget %d; using iterative authority",
                edge_count, self.config.path_edge_budget,
            )
            strategy = "iterative"
        if strategy == "iterative":
            return self._iterative_authority(keys, predecessors, incoming, outgoing)

        budget = self.config.path_work_budget
        remaining = budget
        scores: Dict[str, float] = {}
        for key in keys:
            value, used = self._path_authority(key, predecessors, incoming, outgoing, remaining)
            if value is None:
                logger.info(
                    "Path authority exceeded %d traversal steps; using iterative authority",
                    budget,
                )
                return self._iterative_authority(keys, predecessors, incoming, outgoing)
            scores[key] = value
            if remaining is not None:
                remaining -= used
        return scores

    def _path_authority(
        self,
        start: str,
        predecessors: Dict[str, List[str]],
        incoming: Dict[str, int],
        outgoing: Dict[str, int],
        budget: Optional[int] = None,
    ) -> Tuple[Optional[float], int]:
        """Authority of ``start`` by a walk over predecessors.

        The walk uses an explicit stack; each frame carries the nodes on its
        own path so a predecessor already on the path contributes nothing.
        Returns ``(score, frames popped)``, or ``(None, frames)`` once more
        than ``budget`` frames were needed.
        """
        max_depth = self.config.path_max_depth
        total = 0.0
        frames = 0
        # (node, weight of this node's contribution, depth, nodes on path)
        stack: List[Tuple[str, float, int, FrozenSet[str]]] = [
            (start, 1.0, 0, frozenset((start,)))
        ]
        while stack:
            node, weight, depth, path = stack.pop()
            frames += 1
            if budget is not None and frames > budget:
                return None, frames
            total += weight * incoming[node]
            if max_depth is not None and depth >= max_depth:
                continue
            for src in predecessors[node]:
                if src in path:
                    continue
                stack.append((
                    src,
                    weight / max(1, outgoing[src]),
                    depth + 1,
                    path | {src},
                ))
        return total, frames

    def _iterative_authority(
        self,
        keys: Sequence[str],
        predecessors: Dict[str, List[str]],
        incoming: Dict[str, int],
        outgoing: Dict[str, int],
    ) -> Dict[str, float]:
        scores = {k: float(incoming[k]) for k in keys}
        for _ in range(max(0, self.config.iterative_passes)):
            scores = {
                k: incoming[k] + sum(scores[src] / max(1, outgoing[src]) for src in predecessors[k])
                for k in keys
            }
        return scores

    # -------------------------------------------------------------------
    # Classification
    # -------------------------------------------------------------------

    def _top(
        self,
        keys: Sequence[str],
        counts: Dict[str, int],
        minimum: int,
        canonical_of: Dict[str, str],
    ) -> Tuple[str, ...]:
        eligible = [k for k in keys if counts[k] >= minimum]
        eligible.sort(key=lambda k: (-counts[k], canonical_of[k]))
        return tuple(canonical_of[k] for k in eligible[: self.config.top_n])

    @staticmethod
    def _unreachable(
        keys: Sequence[str],
        successors: Dict[str, List[str]],
        root_key: Optional[str],
        canonical_of: Dict[str, str],
    ) -> Tuple[str, ...]:
        if root_key is None or root_key not in successors:
            return ()
        reached = {root_key}
        queue = deque([root_key])
        while queue:
            for nxt in successors[queue.popleft()]:
                if nxt not in reached:
                    reached.add(nxt)
                    queue.append(nxt)
        return tuple(canonical_of[k] for k in keys if k not in reached)


# ---------------------------------------------------------------------------
# Recommendations
# ---------------------------------------------------------------------------


def linking_recommendations(graph: PageGraph) -> List[str]:
    """Plain-text internal linking suggestions derived from the graph."""
    tips: List[str] = []

    def _sample(urls: Sequence[str]) -> str:
        shown = ", ".join(urls[:MAX_LISTED_RECOMMENDATION_PAGES])
        if len(urls) > MAX_LISTED_RECOMMENDATION_PAGES:
            shown += f" (+{len(urls) - MAX_LISTED_RECOMMENDATION_PAGES} more)"
        return shown

    if graph.orphan_pages:
        tips.append(
            f"Found {len(graph.orphan_pages)} orphan pages with no internal links "
            f"pointing to them. Link to them from related content: "
            f"{_sample(graph.orphan_pages)}"
        )
    if graph.isolated_pages:
        tips.append(
            f"{len(graph.isolated_pages)} pages are completely isolated (no incoming "
            f"or outgoing internal links): {_sample(graph.isolated_pages)}"
        )
    if graph.unreachable_pages:
        tips.append(
            f"{len(graph.unreachable_pages)} pages cannot be reached by following "
            f"links from the home page: {_sample(graph.unreachable_pages)}"
        )
    if graph.hub_pages:
        tips.append(
            f"Use hub pages to distribute link authority to weaker pages: "
            f"{_sample(graph.hub_pages)}"
        )
    if graph.nodes:
        average_out = sum(n.outgoing_link_count for n in graph.nodes) / len(graph.nodes)
        if average_out < 3:
            tips.append(
                f"Pages average {average_out:.1f} internal links. Aim for at least "
                f"3 contextual internal links per page."
            )
    if graph.edges and not any(e.is_contextual for e in graph.edges):
        tips.append(
            "All internal links come from navigation. Add contextual links "
            "inside body copy to strengthen topical relevance."
        )
    return tips


# ---------------------------------------------------------------------------
# Module-level helpers
# ---------------------------------------------------------------------------


def build_graph(
    pages: Iterable[CrawledPage],
    root_url: Optional[str] = None,
    context: Optional[CrawlContext] = None,
    config: Optional[GraphConfig] = None,
) -> PageGraph:
    return LinkGraphBuilder(config).build(pages, root_url=root_url, context=context)


def detect_orphan_pages(
    pages: Iterable[CrawledPage],
    root_url: Optional[str] = None,
) -> List[str]:
    return list(build_graph(pages, root_url=root_url).orphan_pages)
