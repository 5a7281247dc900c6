"""
Vector, keyword and hybrid retrieval over the memories table.

Searches are advisory: engine errors are logged and produce an empty list.
Ranking ties are broken by recency (created_at, then rowid, newest first).
"""

import json
import re
import sqlite3
import time
from typing import Any, Dict, List, Optional

from .config import (
    VECTOR_SEARCH_LIMIT,
    VECTOR_MIN_SCORE,
    KEYWORD_SEARCH_LIMIT,
    HYBRID_SEARCH_LIMIT,
    HYBRID_MIN_SCORE,
    HYBRID_VECTOR_MIN_SCORE,
    HYBRID_OVERFETCH,
    DEFAULT_VECTOR_WEIGHT,
    DEFAULT_KEYWORD_WEIGHT,
)
from .schema import SearchResult
from ..vector.codec import decode_embedding, InvalidEmbeddingError
from ..vector.similarity import cosine_scores
from ..util.logging import logger

_FTS_STRIP_RE = re.compile(r'["\']')
_WORD_RE = re.compile(r"\w", re.UNICODE)


def parse_metadata(raw: Optional[str]) -> Dict[str, Any]:
    if not raw:
        return {}
    try:
        value = json.loads(raw)
    except (TypeError, ValueError):
        return {}
    return value if isinstance(value, dict) else {}


def _recency_key(hit: Dict[str, Any]):
    return (hit["created_at"] or "", hit["rowid"])


def _rank(hits: List[Dict[str, Any]], score_field: str) -> List[Dict[str, Any]]:
    # Two stable sorts: recency first, then score, so equal scores stay newest-first
    hits = sorted(hits, key=_recency_key, reverse=True)
    return sorted(hits, key=lambda h: h[score_field], reverse=True)


def build_fts_query(query: str) -> str:
    """
    Turn free text into an FTS5 MATCH expression.

    Quote characters are stripped and every whitespace token becomes a quoted
    string, so FTS5 operators in user text are matched literally. Tokens are
    implicitly AND-ed.
    """
    tokens = [_FTS_STRIP_RE.sub("", token) for token in query.split()]
    return " ".join(f'"{token}"' for token in tokens if _WORD_RE.search(token))


def vector_search(store, query: str, limit: int = VECTOR_SEARCH_LIMIT,
                  min_score: float = VECTOR_MIN_SCORE, type: Optional[str] = None) -> List[SearchResult]:
    """
    Exhaustive cosine-similarity scan.

    Args:
        store: open MemoryStore
        query: query text, embedded with the store's provider
        limit: maximum results
        min_score: results below this cosine similarity are dropped
        type: optional memory_type equality filter

    Returns:
        SearchResult list ordered by score desc, newest first on ties
    """
    conn = store.require_connection()
    if not query or not query.strip() or limit <= 0:
        return []

    started = time.perf_counter()
    query_embedding = store.embed_query(query)
    if query_embedding is None:
        logger.warning("Vector search skipped: no usable query embedding")
        return []

    sql = '''
        SELECT rowid, id, content, embedding, metadata, created_at
        FROM memories
        WHERE embedding IS NOT NULL
    '''
    params: list = []
    if type:
        sql += " AND memory_type = ?"
        params.append(type)

    try:
        rows = conn.execute(sql, params).fetchall()
    except sqlite3.Error as e:
        logger.error(f"Vector search failed: {e}")
        return []

    candidates = []
    vectors = []
    for row in rows:
        try:
            vectors.append(decode_embedding(row["embedding"]))
        except InvalidEmbeddingError as e:
            logger.warning(f"Skipping memory {row['id']} with undecodable embedding: {e}")
            continue
        candidates.append(row)

    hits = []
    for row, score in zip(candidates, cosine_scores(query_embedding, vectors)):
        if score >= min_score:
            hits.append({
                "rowid": row["rowid"],
                "id": row["id"],
                "content": row["content"],
                "metadata": row["metadata"],
                "created_at": row["created_at"],
                "score": score,
            })

    results = [
        SearchResult(
            id=hit["id"],
            content=hit["content"],
            metadata=parse_metadata(hit["metadata"]),
            score=hit["score"],
            timestamp=hit["created_at"],
            vector_score=hit["score"],
            match_type="vector",
        )
        for hit in _rank(hits, "score")[:limit]
    ]

    logger.log_search("vector", len(results), (time.perf_counter() - started) * 1000,
                      {"scanned": len(candidates), "type": type})
    return results


def keyword_search(store, query: str, limit: int = KEYWORD_SEARCH_LIMIT,
                   type: Optional[str] = None) -> List[SearchResult]:
    """
    BM25-ranked full-text search. Scores are sign-normalized: higher is better.
    Returns [] when FTS5 is unavailable.
    """
    conn = store.require_connection()
    if not store.capabilities.fts5:
        return []

    fts_query = build_fts_query(query or "")
    if not fts_query or limit <= 0:
        return []

    started = time.perf_counter()
    where_clause = "memories_fts MATCH ?"
    params: list = [fts_query]
    if type:
        where_clause += " AND m.memory_type = ?"
        params.append(type)

    sql = f'''
        SELECT
            m.rowid AS rowid,
            m.id,
            m.content,
            m.metadata,
            m.created_at,
            bm25(memories_fts) AS bm25_score
        FROM memories_fts
        JOIN memories m ON m.rowid = memories_fts.rowid
        WHERE {where_clause}
        ORDER BY bm25_score ASC, m.created_at DESC, m.rowid DESC
        LIMIT ?
    '''

    try:
        rows = conn.execute(sql, (*params, limit)).fetchall()
    except sqlite3.Error as e:
        logger.warning(f"Keyword search failed: {e}")
        return []

    results = [
        SearchResult(
            id=row["id"],
            content=row["content"],
            metadata=parse_metadata(row["metadata"]),
            score=abs(row["bm25_score"]),  # bm25() is negative, more negative is better
            timestamp=row["created_at"],
            keyword_score=abs(row["bm25_score"]),
            match_type="fts",
        )
        for row in rows
    ]

    logger.log_search("keyword", len(results), (time.perf_counter() - started) * 1000, {"type": type})
    return results


def hybrid_search(store, query: str, limit: int = HYBRID_SEARCH_LIMIT,
                  min_score: float = HYBRID_MIN_SCORE, type: Optional[str] = None,
                  vector_weight: float = DEFAULT_VECTOR_WEIGHT,
                  keyword_weight: float = DEFAULT_KEYWORD_WEIGHT) -> List[SearchResult]:
    """
    Weighted fusion of vector and keyword results.

    Both legs over-fetch (limit * 2; the vector leg with a wider min score).
    Keyword scores are normalized by the largest raw score in this batch,
    with the denominator floored at 1. A record missing from a leg scores 0
    for it. combined = vector * vector_weight + keyword * keyword_weight.
    Weights are not renormalized.
    """
    store.require_connection()
    if not query or not query.strip() or limit <= 0:
        return []

    started = time.perf_counter()
    fetch = limit * HYBRID_OVERFETCH
    vector_results = vector_search(store, query, limit=fetch, min_score=HYBRID_VECTOR_MIN_SCORE, type=type)
    keyword_results = keyword_search(store, query, limit=fetch, type=type)

    combined: Dict[str, Dict[str, Any]] = {}
    for result in vector_results:
        combined[result.id] = {
            "result": result,
            "vector_score": result.score,
            "keyword_score": 0.0,
        }

    max_keyword_score = max([r.score for r in keyword_results] + [1.0])
    for result in keyword_results:
        normalized = result.score / max_keyword_score
        entry = combined.get(result.id)
        if entry is not None:
            entry["keyword_score"] = normalized
        else:
            combined[result.id] = {
                "result": result,
                "vector_score": 0.0,
                "keyword_score": normalized,
            }

    hits = []
    for memory_id, entry in combined.items():
        score = entry["vector_score"] * vector_weight + entry["keyword_score"] * keyword_weight
        if score < min_score:
            continue
        result = entry["result"]
        hits.append({
            "id": memory_id,
            "result": result,
            "vector_score": entry["vector_score"],
            "keyword_score": entry["keyword_score"],
            "score": score,
            "created_at": result.timestamp,
        })

    # Newest first on equal scores; id makes the order total
    hits = sorted(hits, key=lambda h: (h["created_at"] or "", h["id"]), reverse=True)
    hits = sorted(hits, key=lambda h: h["score"], reverse=True)

    results = [
        SearchResult(
            id=hit["id"],
            content=hit["result"].content,
            metadata=hit["result"].metadata,
            score=hit["score"],
            timestamp=hit["result"].timestamp,
            vector_score=hit["vector_score"],
            keyword_score=hit["keyword_score"],
            match_type="hybrid",
        )
        for hit in hits[:limit]
    ]

    logger.log_search("hybrid", len(results), (time.perf_counter() - started) * 1000, {
        "vector_candidates": len(vector_results),
        "keyword_candidates": len(keyword_results),
        "type": type,
    })
    return results
