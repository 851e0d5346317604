"""Tests for similarity scoring and ranking helpers."""

import numpy as np
import pytest

from dude_memory.backends.base import Record
from dude_memory.search.ranking import (
    RELEVANCE_FLOOR,
    as_vector,
    boost,
    candidate_count,
    decode_f32,
    dot_similarity,
    encode_f32,
    is_duplicate,
    pick_duplicate,
    rank_candidates,
    similarity_from_distance,
    vector_json,
)


def make_record(record_id: int, project: str = "acme/widgets") -> Record:
    return Record(
        id=record_id,
        project_id=1,
        project=project,
        kind="issue",
        title=f"Record {record_id}",
        body="",
        status="open",
        created_at="2025-06-01T12:00:00.000Z",
        updated_at="2025-06-01T12:00:00.000Z",
    )


class TestCodecs:
    """float32 blobs and libSQL vector literals."""

    def test_blob_layout(self):
        blob = encode_f32([1.0, -0.5, 0.25])
        assert len(blob) == 12
        np.testing.assert_array_equal(decode_f32(blob), [1.0, -0.5, 0.25])

    def test_decode_missing(self):
        assert decode_f32(None) is None
        assert decode_f32(b"") is None

    def test_vector_json(self):
        assert vector_json(np.array([0.5, -1.0])) == "[0.5, -1.0]"

    def test_as_vector_checks_dimensions(self):
        assert as_vector([1, 2, 3], 3).dtype == np.float32
        with pytest.raises(ValueError):
            as_vector([1, 2, 3], 4)
        with pytest.raises(ValueError):
            as_vector([])


class TestScores:
    """Similarity, boost and dedup decisions."""

    def test_dot_similarity(self):
        a = np.array([1.0, 0.0], dtype=np.float32)
        assert dot_similarity(a, np.array([1.0, 0.0], dtype=np.float32)) == 1.0
        assert dot_similarity(a, np.array([0.0, 1.0], dtype=np.float32)) == 0.0
        assert dot_similarity(a, None) == 0.0

    def test_similarity_from_distance(self):
        assert similarity_from_distance(0.15) == pytest.approx(0.85)
        assert similarity_from_distance(0.0) == 1.0

    def test_boost(self):
        assert boost(0.5, same_project=True) == pytest.approx(0.6)
        assert boost(0.5, same_project=False) == 0.5
        assert boost(0.95, same_project=True) == 1.0

    def test_dedup_boundary_inclusive(self):
        assert is_duplicate(0.85)
        assert not is_duplicate(0.8499)

    def test_pick_duplicate_takes_best(self):
        assert pick_duplicate([(1, 0.86), (2, 0.97), (3, 0.9)]) == 2
        assert pick_duplicate([(1, 0.5), (2, 0.84)]) is None
        assert pick_duplicate([]) is None

    def test_candidate_count(self):
        assert candidate_count(5) == 15


class TestRankCandidates:
    """Boost, floor, stable ordering and limit."""

    def test_boost_and_order(self):
        candidates = [
            (make_record(1, "other"), 0.8),
            (make_record(2), 0.75),
            (make_record(3, "other"), 0.6),
        ]
        ranked = rank_candidates(candidates, "acme/widgets", limit=5)
        assert [r.id for r in ranked] == [2, 1, 3]
        assert ranked[0].similarity == pytest.approx(0.85)

    def test_floor_applies_after_boost(self):
        candidates = [(make_record(1), 0.25), (make_record(2, "other"), 0.25)]
        ranked = rank_candidates(candidates, "acme/widgets", limit=5)
        assert [r.id for r in ranked] == [1]
        assert all(r.similarity >= RELEVANCE_FLOOR for r in ranked)

    def test_ties_keep_retrieval_order(self):
        candidates = [(make_record(i, "other"), 0.5) for i in (4, 2, 9)]
        ranked = rank_candidates(candidates, "acme/widgets", limit=5)
        assert [r.id for r in ranked] == [4, 2, 9]

    def test_limit(self):
        candidates = [(make_record(i, "other"), 0.9 - i / 100) for i in range(10)]
        assert len(rank_candidates(candidates, "acme/widgets", limit=3)) == 3

    def test_capped_at_one(self):
        ranked = rank_candidates([(make_record(1), 0.999)], "acme/widgets", limit=1)
        assert ranked[0].similarity == 1.0
