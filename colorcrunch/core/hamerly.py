"""
Ускоренный последовательный KMeans (алгоритм Хамерли).

Для каждой точки хранятся:
- upper: верхняя граница расстояния до назначенного центроида;
- lower: нижняя граница расстояния до второго ближайшего центроида.
Для каждого кластера s = половина расстояния до ближайшего соседнего центроида.

Если upper < max(s[a], lower), назначение точки гарантированно оптимально и
расстояния для неё не считаются. Границы ведутся в евклидовом расстоянии
(без квадрата): неравенство треугольника выполняется только для него.
Границы - отсечение, а не приближение: результат совпадает с KMeansLloyd
при одинаковой инициализации.
"""

from __future__ import annotations

from typing import Any

import numpy as np

from .distance import DEFAULT_BATCH_SIZE, pairwise_squared_distances, squared_distance
from .lloyd import KMeansLloyd


class KMeansHamerly(KMeansLloyd):
    """KMeans с отсечением по верхним/нижним границам расстояний."""

    def __init__(
        self,
        n_clusters: int,
        n_iters: int = 100,
        tol: float = 1e-4,
        logger: Any | None = None,
    ) -> None:
        super().__init__(n_clusters=n_clusters, n_iters=n_iters, tol=tol, logger=logger)
        self.upper: np.ndarray | None = None
        self.lower: np.ndarray | None = None
        # Число вычисленных расстояний точка-центроид за fit
        self.n_distance_computations: int = 0

    def _on_fit_start(self, X: np.ndarray) -> None:
        N = X.shape[0]
        # upper=inf, lower=0 - корректные (пусть и бесполезные) границы:
        # на первой итерации все точки пройдут полный перебор
        self.labels = np.zeros(N, dtype=np.int64)
        self.upper = np.full(N, np.inf)
        self.lower = np.zeros(N)
        self.n_distance_computations = 0

    @staticmethod
    def half_nearest_gap(centroids: np.ndarray) -> np.ndarray:
        """s[j] = 0.5 * расстояние от центроида j до ближайшего другого."""
        K = centroids.shape[0]
        if K < 2:
            return np.full(K, np.inf)
        d2 = pairwise_squared_distances(centroids, centroids)
        d2[np.arange(K), np.arange(K)] = np.inf
        return 0.5 * np.sqrt(np.min(d2, axis=1))

    def _assign_step(self, X: np.ndarray, centroids: np.ndarray) -> np.ndarray:
        assert self.upper is not None and self.lower is not None
        labels = self.labels.copy()

        s = self.half_nearest_gap(centroids)
        bound = np.maximum(s[labels], self.lower)

        # Шаг 1: уточняем верхнюю границу только там, где тест не прошёл
        candidates = np.flatnonzero(self.upper >= bound)
        if candidates.size:
            exact = np.sqrt(squared_distance(X[candidates], centroids[labels[candidates]]))
            self.n_distance_computations += int(candidates.size)
            self.upper[candidates] = exact
            candidates = candidates[exact >= bound[candidates]]

        # Шаг 2: полный перебор центроидов для оставшихся точек
        for start in range(0, candidates.size, DEFAULT_BATCH_SIZE):
            self._scan(X, centroids, labels, candidates[start:start + DEFAULT_BATCH_SIZE])

        return labels

    def _scan(
        self,
        X: np.ndarray,
        centroids: np.ndarray,
        labels: np.ndarray,
        idx: np.ndarray,
    ) -> None:
        K = centroids.shape[0]
        d2 = pairwise_squared_distances(X[idx], centroids)
        self.n_distance_computations += int(idx.size) * K

        rows = np.arange(idx.size)
        best = np.argmin(d2, axis=1)
        best_d2 = d2[rows, best]
        if K > 1:
            d2[rows, best] = np.inf
            second_d2 = np.min(d2, axis=1)
        else:
            second_d2 = np.full(idx.size, np.inf)

        labels[idx] = best
        self.upper[idx] = np.sqrt(best_d2)
        self.lower[idx] = np.sqrt(second_d2)

    def _on_centroids_moved(self, old: np.ndarray, new: np.ndarray) -> None:
        """
        Сдвигает границы на смещения центроидов.

        upper растёт на смещение своего центроида, lower уменьшается на
        наибольшее смещение среди остальных: границы остаются консервативными.
        """
        assert self.upper is not None and self.lower is not None
        shift = np.sqrt(squared_distance(old, new))
        self.upper += shift[self.labels]

        K = shift.shape[0]
        if K > 1:
            order = np.argsort(shift)
            top, runner_up = order[-1], order[-2]
            max_other = np.where(self.labels == top, shift[runner_up], shift[top])
            self.lower -= max_other
