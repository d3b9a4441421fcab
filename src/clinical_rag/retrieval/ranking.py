"""Threshold, order and truncate scored search results.

Ordering is by score descending, then ``document_id`` and
``chunk_index`` ascending, so equal scores always come back in the same
order for a fixed corpus.  Global-tenant results compete on raw score
with tenant results; no weighting is applied.
"""

from __future__ import annotations

from collections.abc import Iterable

from clinical_rag.retrieval.models import SearchResult


def _sort_key(result: SearchResult) -> tuple[float, str, int]:
    return (-result.score, result.document_id, result.chunk_index)


def rank(
    candidates: Iterable[SearchResult],
    *,
    threshold: float,
    limit: int,
) -> list[SearchResult]:
    """Keep results scoring at least *threshold*, best first, at most *limit*."""
    if limit <= 0:
        return []
    kept = [r for r in candidates if r.score >= threshold]
    kept.sort(key=_sort_key)
    return kept[:limit]


def deduplicate(results: Iterable[SearchResult]) -> list[SearchResult]:
    """Collapse repeated ``(document_id, chunk_index)`` hits, keeping the best score.

    Used when several queries are merged; the output is ranked.
    """
    best: dict[tuple[str, int], SearchResult] = {}
    for result in results:
        key = (result.document_id, result.chunk_index)
        current = best.get(key)
        if current is None or result.score > current.score:
            best[key] = result
    return sorted(best.values(), key=_sort_key)
