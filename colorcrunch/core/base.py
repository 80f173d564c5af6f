from abc import ABC, abstractmethod
from typing import Any

import numpy as np

from colorcrunch.core.distance import has_converged, max_centroid_movement
from colorcrunch.metrics.timers import Timer


class KMeansBase(ABC):
    """
    Базовый класс движков KMeans.

    Отвечает за цикл итераций и сбор низкоуровневых таймингов:
    - T_назначения: время шага назначения точек кластерам;
    - T_обновления: время шага update_centroids;
    - T_итерации: сумма двух предыдущих.
    """

    def __init__(
        self,
        n_clusters: int,
        n_iters: int = 100,
        tol: float = 1e-4,
        logger: Any | None = None,
    ):
        self.K = n_clusters
        self.n_iters = n_iters
        self.tol = tol  # Порог сходимости: квадрат смещения сравнивается с tol²
        self.logger = logger

        self.centroids: np.ndarray | None = None
        self.labels: np.ndarray | None = None

        # агрегированные тайминги за один вызов fit(...)
        self.t_assign_total: float = 0.0
        self.t_update_total: float = 0.0
        self.t_iter_total: float = 0.0

        # Реальное количество выполненных итераций
        self.n_iters_actual: int = 0
        self.converged: bool = False

    def _reset_stats(self) -> None:
        self.t_assign_total = 0.0
        self.t_update_total = 0.0
        self.t_iter_total = 0.0
        self.n_iters_actual = 0
        self.converged = False

    def fit(self, X: np.ndarray, initial_centroids: np.ndarray) -> None:
        """
        Основной цикл KMeans с остановкой по сходимости.

        Алгоритм останавливается, когда:
        - все центроиды сместились меньше чем на tol, ИЛИ
        - достигнуто максимальное количество итераций (n_iters).

        Пустые кластеры сохраняют прежний центроид. После цикла метки
        пересчитываются относительно финальных центроидов.
        """
        X = np.asarray(X, dtype=np.float64)
        self.centroids = np.array(initial_centroids, dtype=np.float64, copy=True)
        self._reset_stats()
        self._on_fit_start(X)

        for i in range(self.n_iters):
            old_centroids = self.centroids

            with Timer() as t_assign:
                self.labels = self._assign_step(X, old_centroids)
            with Timer() as t_update:
                new_centroids = self.update_centroids(X, self.labels)

            self._record_timings(t_assign.elapsed, t_update.elapsed)
            self.n_iters_actual = i + 1

            max_change = max_centroid_movement(old_centroids, new_centroids)
            self.converged = has_converged(old_centroids, new_centroids, self.tol)
            self._log_iteration(i, t_assign.elapsed, t_update.elapsed, max_change)

            self._on_centroids_moved(old_centroids, new_centroids)
            self.centroids = new_centroids

            if self.converged:
                self._log_convergence(i, max_change)
                break

        # Метки, полученные на последней итерации, относятся к старым центроидам
        if self.n_iters_actual == 0 or not np.array_equal(old_centroids, self.centroids):
            with Timer() as t_final:
                self.labels = self._assign_step(X, self.centroids)
            self.t_assign_total += t_final.elapsed
            self.t_iter_total += t_final.elapsed

    def _record_timings(self, t_assign: float, t_update: float) -> None:
        self.t_assign_total += t_assign
        self.t_update_total += t_update
        self.t_iter_total += t_assign + t_update

    def _log_iteration(
        self, i: int, t_assign: float, t_update: float, max_change: float
    ) -> None:
        if self.logger and (i == 0 or (i + 1) % 10 == 0 or self.converged):
            status = " (converged)" if self.converged else ""
            self.logger.info(
                f"  Iteration {i + 1}/{self.n_iters}{status} "
                f"(T_assign={t_assign:.6f}s, "
                f"T_update={t_update:.6f}s, "
                f"max_change={max_change:.2e})"
            )

    def _log_convergence(self, i: int, max_change: float) -> None:
        if self.logger:
            self.logger.info(
                f"  Convergence reached after {i + 1} iterations "
                f"(max_change={max_change:.2e} < tol²={self.tol * self.tol:.2e})"
            )

    # --- Шаги алгоритма ---

    def _on_fit_start(self, X: np.ndarray) -> None:
        """Хук: подготовка состояния движка перед первой итерацией."""

    def _on_centroids_moved(self, old: np.ndarray, new: np.ndarray) -> None:
        """Хук: вызывается после обновления центроидов."""

    def _assign_step(self, X: np.ndarray, centroids: np.ndarray) -> np.ndarray:
        return self.assign_clusters(X, centroids)

    @abstractmethod
    def assign_clusters(self, X: np.ndarray, centroids: np.ndarray) -> np.ndarray:
        """Шаг назначения точек кластерам."""
        raise NotImplementedError

    def update_centroids(self, X: np.ndarray, labels: np.ndarray) -> np.ndarray:
        """Шаг обновления центроидов по присвоенным меткам."""
        K = self.K
        D = X.shape[1]
        counts = np.bincount(labels, minlength=K)
        sums = np.zeros((K, D), dtype=np.float64)
        for d in range(D):
            sums[:, d] = np.bincount(labels, weights=X[:, d], minlength=K)
        return self._merge_centroids(sums, counts)

    def _merge_centroids(self, sums: np.ndarray, counts: np.ndarray) -> np.ndarray:
        """
        Средние по непустым кластерам; пустые сохраняют прежние координаты.

        Args:
            sums: Суммы координат точек по кластерам (K, D)
            counts: Количество точек в кластерах (K,)
        """
        new_centroids = self.centroids.copy()
        non_empty = counts > 0
        new_centroids[non_empty] = sums[non_empty] / counts[non_empty, None]
        return new_centroids
