"""
Similarity scoring and ranking shared by both storage backends.

Both backends hand their nearest-neighbour candidates to the functions in
this module, so the boost, floor, ordering and dedup threshold are the
same code path regardless of engine.

Embeddings are L2-normalized, so the dot product of two vectors equals
their cosine similarity:

    similarity = q · v = cos(q, v)        (native backend, from raw vectors)
    similarity = 1 - cosine_distance      (legacy backend, from vec0 distance)

Ranking:
    1. boost candidates owned by the current project by PROJECT_BOOST (capped at 1.0)
    2. drop candidates below RELEVANCE_FLOOR
    3. stable sort, highest similarity first
    4. truncate to the requested limit
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Sequence
from typing import TYPE_CHECKING

import numpy as np
from numpy.typing import NDArray

if TYPE_CHECKING:
    from ..backends.base import Record

CANDIDATE_OVERSAMPLE = 3  # candidates fetched per requested result
DEDUP_CANDIDATES = 5  # same-project, same-kind neighbours wanted; fetched oversampled
DEDUP_THRESHOLD = 0.85  # similarity at or above which a write is a duplicate
RELEVANCE_FLOOR = 0.3  # minimum similarity for a search result
PROJECT_BOOST = 0.1  # bonus for records of the current project


def as_vector(embedding: Sequence[float] | NDArray, dimensions: int | None = None) -> NDArray:
    """Coerce an embedding to a flat float32 array.

    Raises:
        ValueError: If the vector is empty or does not have ``dimensions`` components.
    """
    vec = np.asarray(embedding, dtype=np.float32).ravel()
    if vec.size == 0:
        raise ValueError("embedding is empty")
    if dimensions is not None and vec.size != dimensions:
        raise ValueError(f"expected {dimensions} dimensions, got {vec.size}")
    return vec


def encode_f32(embedding: Sequence[float] | NDArray) -> bytes:
    """Little-endian float32 bytes, the layout of both vec0 and F32_BLOB."""
    return as_vector(embedding).astype("<f4").tobytes()


def decode_f32(blob: bytes | bytearray | memoryview | None) -> NDArray | None:
    """Decode a float32 blob back into a vector; None for a missing embedding."""
    if blob is None or len(blob) == 0:
        return None
    return np.frombuffer(bytes(blob), dtype="<f4")


def vector_json(embedding: Sequence[float] | NDArray) -> str:
    """Render an embedding as the JSON array accepted by libSQL's ``vector()``."""
    return json.dumps([float(x) for x in as_vector(embedding)])


def dot_similarity(query: NDArray, stored: NDArray | None) -> float:
    """Cosine similarity of two unit vectors; 0.0 when nothing is stored."""
    if stored is None or stored.shape != query.shape:
        return 0.0
    return float(np.dot(query, stored))


def similarity_from_distance(distance: float) -> float:
    """Convert a cosine distance into a similarity."""
    return 1.0 - float(distance)


def boost(similarity: float, same_project: bool) -> float:
    """Apply the same-project boost, capping the result at 1.0."""
    if same_project:
        similarity += PROJECT_BOOST
    return min(1.0, similarity)


def is_duplicate(similarity: float) -> bool:
    """Whether a candidate is close enough to be overwritten instead of inserted."""
    return similarity >= DEDUP_THRESHOLD


def pick_duplicate(scored: Iterable[tuple[int, float]]) -> int | None:
    """Id of the best-scoring candidate if it clears the dedup threshold."""
    best: tuple[int, float] | None = None
    for record_id, similarity in scored:
        if best is None or similarity > best[1]:
            best = (record_id, similarity)
    if best is not None and is_duplicate(best[1]):
        return best[0]
    return None


def candidate_count(limit: int) -> int:
    """Number of neighbours to fetch for a search returning ``limit`` results."""
    return int(limit) * CANDIDATE_OVERSAMPLE


def rank_candidates(
    candidates: Iterable[tuple[Record, float]],
    current_project: str,
    limit: int,
) -> list[Record]:
    """
    Rank scored candidates into final search results.

    Args:
        candidates: (record, raw similarity) pairs in retrieval order
        current_project: Name of the active project (receives the boost)
        limit: Maximum number of results

    Returns:
        Records with ``similarity`` set, best first
    """
    scored: list[tuple[Record, float]] = []
    for record, similarity in candidates:
        boosted = boost(similarity, record.project == current_project)
        if boosted >= RELEVANCE_FLOOR:
            scored.append((record, boosted))

    # sorted() is stable: ties keep retrieval (nearest-first) order
    scored.sort(key=lambda pair: pair[1], reverse=True)

    results = []
    for record, similarity in scored[:limit]:
        record.similarity = similarity
        results.append(record)
    return results
