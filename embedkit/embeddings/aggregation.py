"""Aggregation of chunk vectors and small vector utilities."""

from dataclasses import dataclass
from typing import List, Literal, Optional, Sequence, Union

import numpy as np

from ..common.errors import ConfigurationError, DimensionMismatchError
from .types import Aggregation, EmbeddingVector


@dataclass(frozen=True)
class AggregationResult:
    """``vector`` is set for ``single`` results, ``vectors`` for ``multiple``."""

    kind: Literal["single", "multiple"]
    dimensions: int
    vector: Optional[EmbeddingVector] = None
    vectors: Optional[List[EmbeddingVector]] = None


def _as_matrix(vectors: Sequence[Sequence[float]]) -> np.ndarray:
    if len(vectors) == 0:
        raise DimensionMismatchError("Cannot aggregate empty vector array")

    dimensions = len(vectors[0])
    for i, vector in enumerate(vectors[1:], start=1):
        if len(vector) != dimensions:
            raise DimensionMismatchError(
                f"Vector dimension mismatch: expected {dimensions}, got {len(vector)} at index {i}"
            )
    return np.asarray(vectors, dtype=np.float64).reshape(len(vectors), dimensions)


def aggregate_vectors(
    vectors: Sequence[Sequence[float]],
    strategy: Aggregation = "average"
) -> AggregationResult:
    """Combine chunk vectors.

    Parameters
    - vectors: One vector per chunk, in chunk order; all the same length
    - strategy: ``average`` (element-wise mean), ``max`` (element-wise max),
      ``first`` (first chunk only) or ``all`` (every vector, unchanged)
    """
    matrix = _as_matrix(vectors)
    dimensions = matrix.shape[1]

    if strategy == "average":
        return AggregationResult("single", dimensions, vector=matrix.mean(axis=0).tolist())
    if strategy == "max":
        return AggregationResult("single", dimensions, vector=matrix.max(axis=0).tolist())
    if strategy == "first":
        return AggregationResult("single", dimensions, vector=list(vectors[0]))
    if strategy == "all":
        return AggregationResult("multiple", dimensions, vectors=[list(v) for v in vectors])

    raise ConfigurationError(f"Unknown aggregation strategy: {strategy}")


def _pair(a: Sequence[float], b: Sequence[float]):
    if len(a) != len(b):
        raise DimensionMismatchError(f"Vector dimension mismatch: {len(a)} vs {len(b)}")
    return np.asarray(a, dtype=np.float64), np.asarray(b, dtype=np.float64)


def normalize_vector(vector: Sequence[float]) -> EmbeddingVector:
    """Scale to unit length; the zero vector is returned unchanged."""
    array = np.asarray(vector, dtype=np.float64)
    magnitude = np.linalg.norm(array)
    if magnitude == 0:
        return list(vector)
    return (array / magnitude).tolist()


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    x, y = _pair(a, b)
    magnitude = np.linalg.norm(x) * np.linalg.norm(y)
    if magnitude == 0:
        return 0.0
    return float(np.dot(x, y) / magnitude)


def euclidean_distance(a: Sequence[float], b: Sequence[float]) -> float:
    x, y = _pair(a, b)
    return float(np.linalg.norm(x - y))


def dot_product(a: Sequence[float], b: Sequence[float]) -> float:
    x, y = _pair(a, b)
    return float(np.dot(x, y))


def get_dimensions(vectors: Union[Sequence[float], Sequence[Sequence[float]]]) -> int:
    """Dimensionality of a vector or of the first vector in a list."""
    if len(vectors) == 0:
        return 0
    first = vectors[0]
    if isinstance(first, (int, float)):
        return len(vectors)
    return len(first)
