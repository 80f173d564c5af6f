"""
Тесты метрики и критерия сходимости.
"""

import numpy as np
from colorcrunch.core.distance import (
    has_converged,
    max_centroid_movement,
    min_centroid_distance,
    nearest_centroids,
    pairwise_squared_distances,
    squared_distance,
)


class TestSquaredDistance:
    """Тесты квадрата евклидова расстояния."""

    def test_single_vectors(self):
        assert squared_distance(np.array([0, 0, 0]), np.array([1, 2, 2])) == 9.0

    def test_rows(self):
        a = np.array([[0.0, 0.0, 0.0], [1.0, 1.0, 1.0]])
        b = np.array([[3.0, 4.0, 0.0], [1.0, 1.0, 1.0]])
        np.testing.assert_allclose(squared_distance(a, b), [25.0, 0.0])

    def test_pairwise_shape_and_values(self):
        X = np.array([[0.0, 0.0, 0.0], [10.0, 0.0, 0.0]])
        C = np.array([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [10.0, 0.0, 0.0]])
        d2 = pairwise_squared_distances(X, C)
        assert d2.shape == (2, 3)
        np.testing.assert_allclose(d2, [[0.0, 1.0, 100.0], [100.0, 81.0, 0.0]])


class TestNearestCentroids:
    """Тесты выбора ближайшего центроида."""

    def test_basic(self, simple_colors):
        X, centroids = simple_colors
        labels = nearest_centroids(X, centroids)
        np.testing.assert_array_equal(labels, [0, 0, 0, 1, 1, 1])
        assert labels.dtype == np.int64

    def test_tie_goes_to_lower_index(self):
        X = np.array([[5.0, 0.0, 0.0]])
        C = np.array([[10.0, 0.0, 0.0], [0.0, 0.0, 0.0]])
        assert nearest_centroids(X, C)[0] == 0

    def test_batching_does_not_change_result(self, color_blobs):
        X, centroids = color_blobs
        np.testing.assert_array_equal(
            nearest_centroids(X, centroids, batch_size=7),
            nearest_centroids(X, centroids),
        )


class TestConvergence:
    """Тесты критерия сходимости (сравнение квадратов)."""

    def test_converged_when_below_squared_tolerance(self):
        old = np.array([[0.0, 0.0, 0.0]])
        new = np.array([[0.5, 0.0, 0.0]])
        # 0.25 < 0.6**2 = 0.36
        assert has_converged(old, new, 0.6)
        # 0.25 < 0.5**2 ложно: строгое сравнение
        assert not has_converged(old, new, 0.5)

    def test_requires_every_centroid(self):
        old = np.zeros((2, 3))
        new = np.array([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0]])
        assert not has_converged(old, new, 0.1)

    def test_max_movement(self):
        old = np.zeros((2, 3))
        new = np.array([[1.0, 0.0, 0.0], [0.0, 2.0, 0.0]])
        assert max_centroid_movement(old, new) == 4.0
        assert max_centroid_movement(np.empty((0, 3)), np.empty((0, 3))) == 0.0

    def test_min_centroid_distance(self):
        C = np.array([[0.0, 0.0, 0.0], [3.0, 0.0, 0.0], [0.0, 1.0, 0.0]])
        assert min_centroid_distance(C) == 1.0
        assert min_centroid_distance(C[:1]) == float("inf")
