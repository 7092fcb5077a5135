"""Tests for vector aggregation and vector utilities."""

import pytest

from embedkit.common.errors import DimensionMismatchError
from embedkit.embeddings.aggregation import (
    aggregate_vectors,
    cosine_similarity,
    dot_product,
    euclidean_distance,
    get_dimensions,
    normalize_vector,
)

VECTORS = [[1.0, 2.0, 3.0], [3.0, 0.0, 5.0]]


def test_average():
    result = aggregate_vectors(VECTORS, "average")

    assert result.kind == "single"
    assert result.dimensions == 3
    assert result.vector == pytest.approx([2.0, 1.0, 4.0])


def test_max():
    assert aggregate_vectors(VECTORS, "max").vector == [3.0, 2.0, 5.0]


def test_first():
    assert aggregate_vectors(VECTORS, "first").vector == [1.0, 2.0, 3.0]


def test_all_keeps_every_vector():
    result = aggregate_vectors(VECTORS, "all")

    assert result.kind == "multiple"
    assert result.vectors == VECTORS
    assert result.vector is None


def test_empty_input():
    with pytest.raises(DimensionMismatchError, match="empty"):
        aggregate_vectors([], "average")


def test_mismatch_names_the_index():
    with pytest.raises(DimensionMismatchError, match="index 2"):
        aggregate_vectors([[1.0, 2.0], [3.0, 4.0], [5.0]], "average")


def test_similarity_helpers():
    assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)
    assert cosine_similarity([1.0, 1.0], [2.0, 2.0]) == pytest.approx(1.0)
    assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0
    assert euclidean_distance([0.0, 0.0], [3.0, 4.0]) == pytest.approx(5.0)
    assert dot_product([1.0, 2.0], [3.0, 4.0]) == pytest.approx(11.0)

    with pytest.raises(DimensionMismatchError):
        dot_product([1.0], [1.0, 2.0])


def test_normalize_vector():
    assert normalize_vector([3.0, 4.0]) == pytest.approx([0.6, 0.8])
    assert normalize_vector([0.0, 0.0]) == [0.0, 0.0]


def test_get_dimensions():
    assert get_dimensions([0.1, 0.2, 0.3]) == 3
    assert get_dimensions([[0.1, 0.2], [0.3, 0.4]]) == 2
    assert get_dimensions([]) == 0
