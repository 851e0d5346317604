"""
Similarity search helpers.

Provides:
- Vector codecs for float32 blobs and libSQL vector literals
- Dot-product similarity for unit vectors
- Same-project boost, relevance floor and stable ranking
- Dedup threshold decision
"""

from .ranking import (
    DEDUP_THRESHOLD,
    PROJECT_BOOST,
    RELEVANCE_FLOOR,
    decode_f32,
    dot_similarity,
    encode_f32,
    rank_candidates,
    vector_json,
)

__all__ = [
    "DEDUP_THRESHOLD",
    "PROJECT_BOOST",
    "RELEVANCE_FLOOR",
    "decode_f32",
    "dot_similarity",
    "encode_f32",
    "rank_candidates",
    "vector_json",
]
