"""Candidate expansion over the note link graph."""

import logging
from typing import Iterable, List, Optional, Set

from vaultseek.core.interfaces import LinkGraph

DEFAULT_CO_CITATION_THRESHOLD = 20


class GraphExpander:
    """Breadth-first expansion through outgoing links and backlinks.

    Args:
        graph: Link graph of the vault
        co_citation_threshold: Co-citations are only added when there are
            fewer grep hits than this
    """

    def __init__(self, graph: LinkGraph, co_citation_threshold: int = DEFAULT_CO_CITATION_THRESHOLD):
        self.graph = graph
        self.co_citation_threshold = co_citation_threshold
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    def neighbors(self, path: str) -> List[str]:
        """Outgoing link targets followed by backlinks, each once."""
        result: List[str] = []
        seen: Set[str] = set()
        for target in self.graph.outgoing_links(path):
            if target not in seen:
                seen.add(target)
                result.append(target)
        for source in sorted(self.graph.backlinks(path)):
            if source not in seen:
                seen.add(source)
                result.append(source)
        return result

    def expand_from_notes(self, paths: Iterable[str], hops: int) -> List[str]:
        """Return seeds plus every note within ``hops`` links of them.

        Each note is visited once. Traversal stops as soon as a hop adds
        nothing new.
        """
        visited: List[str] = []
        seen: Set[str] = set()
        for path in paths:
            if path not in seen:
                seen.add(path)
                visited.append(path)

        frontier = list(visited)
        for _ in range(max(hops, 0)):
            next_frontier: List[str] = []
            for node in frontier:
                for neighbor in self.neighbors(node):
                    if neighbor not in seen:
                        seen.add(neighbor)
                        visited.append(neighbor)
                        next_frontier.append(neighbor)
            if not next_frontier:
                break
            frontier = next_frontier
        return visited

    def get_co_citations(self, paths: Iterable[str]) -> List[str]:
        """Notes that link to the same targets as the given notes."""
        inputs = list(dict.fromkeys(paths))
        excluded = set(inputs)
        result: List[str] = []
        seen: Set[str] = set()
        for path in inputs:
            for target in self.graph.outgoing_links(path):
                for co_citing in sorted(self.graph.backlinks(target)):
                    if co_citing in excluded or co_citing in seen:
                        continue
                    seen.add(co_citing)
                    result.append(co_citing)
        return result

    def get_active_note_neighbors(self, active_path: Optional[str], hops: int = 1) -> List[str]:
        if not active_path:
            return []
        return self.expand_from_notes([active_path], hops)

    def expand_candidates(
        self, grep_hits: List[str], active_note: Optional[str], hops: int = 1
    ) -> List[str]:
        """Combine grep hits, their graph neighborhood and the active note's.

        Returns:
            Ordered, de-duplicated candidate paths (grep hits first)
        """
        candidates: List[str] = []
        seen: Set[str] = set()

        def add_all(paths: Iterable[str]) -> int:
            added = 0
            for path in paths:
                if path not in seen:
                    seen.add(path)
                    candidates.append(path)
                    added += 1
            return added

        add_all(grep_hits)
        from_hits = add_all(self.expand_from_notes(grep_hits, hops))
        from_active = add_all(self.get_active_note_neighbors(active_note, hops))
        from_co_citations = 0
        if 0 < len(grep_hits) < self.co_citation_threshold:
            from_co_citations = add_all(self.get_co_citations(grep_hits))

        self.logger.info(
            f"Graph expansion: {len(grep_hits)} hits -> {len(candidates)} candidates "
            f"(+{from_hits} links, +{from_active} active note, +{from_co_citations} co-citations)"
        )
        return candidates
