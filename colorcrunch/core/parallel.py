"""
Параллельный KMeans: назначение и агрегация на вычислительном устройстве.

Варианты (отличаются тем, что считается за dispatch и что читается на хост):
- PARALLEL_ASSIGNMENTS (A): устройство считает только метки; хост читает
  метки, сам агрегирует и записывает новые центроиды обратно;
- PARALLEL_CENTROIDS (B): устройство накапливает агрегаты и само делит
  их на счётчики; хост читает только K центроидов, обратная запись не нужна;
- PARALLEL_AGGREGATES (C): устройство накапливает агрегаты атомарно; хост
  читает их, делит, проверяет сходимость и записывает центроиды обратно.

Каждое чтение на хост - точка приостановки (await). После цикла всегда
выполняется финальный ASSIGN и чтение буфера меток.
"""

from __future__ import annotations

import asyncio
from typing import Any, Tuple

import numpy as np

from colorcrunch.core.base import KMeansBase
from colorcrunch.core.config import KMeansAlgorithm
from colorcrunch.core.device import BufferName, ComputeDevice, HostDevice, Stage
from colorcrunch.core.distance import has_converged, max_centroid_movement
from colorcrunch.core.errors import KMeansConfigError
from colorcrunch.metrics.timers import Timer


def _ensure_no_running_loop(method: str) -> None:
    """Блокирующая обёртка не может запускать asyncio.run из корутины."""
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return
    raise RuntimeError(
        f"{method}() cannot be called from a running event loop; "
        f"await {method}_async() or KMeans.run_async() instead"
    )


class KMeansParallel(KMeansBase):
    """
    Каркас параллельного движка.

    - Один перенос данных на устройство в fit (t_h2d), финальное чтение
      меток (t_d2h).
    - fit_async - основная форма с приостановками; fit - синхронная обёртка.
    - Буферы устройства освобождаются в finally, в том числе при ошибке.
    """

    def __init__(
        self,
        n_clusters: int,
        n_iters: int = 100,
        tol: float = 1e-4,
        variant: KMeansAlgorithm | str = KMeansAlgorithm.PARALLEL_AGGREGATES,
        device: ComputeDevice | None = None,
        logger: Any | None = None,
    ) -> None:
        super().__init__(n_clusters=n_clusters, n_iters=n_iters, tol=tol, logger=logger)
        variant = KMeansAlgorithm(variant)
        if not variant.is_parallel:
            raise KMeansConfigError(f"{variant.value!r} is not a parallel variant")
        self.variant = variant
        self.device = device if device is not None else HostDevice(logger=logger)
        self.t_h2d: float = 0.0  # Время передачи Host->Device
        self.t_d2h: float = 0.0  # Время финального чтения меток Device->Host

    # --- Синхронные обёртки ---
    # Внутри работающего цикла событий нужны fit_async / assign_clusters_async
    # (или KMeans.run_async / assign_async).

    def fit(self, X: np.ndarray, initial_centroids: np.ndarray) -> None:
        _ensure_no_running_loop("fit")
        asyncio.run(self.fit_async(X, initial_centroids))

    def assign_clusters(self, X: np.ndarray, centroids: np.ndarray) -> np.ndarray:
        _ensure_no_running_loop("assign_clusters")
        return asyncio.run(self.assign_clusters_async(X, centroids))

    # --- Асинхронные формы ---

    async def assign_clusters_async(self, X: np.ndarray, centroids: np.ndarray) -> np.ndarray:
        """Один ASSIGN на устройстве для произвольных точек и центроидов."""
        X = np.asarray(X, dtype=np.float64)
        if X.shape[0] == 0:
            return np.empty(0, dtype=np.int64)
        self.device.open(X, centroids)
        try:
            fence = self.device.submit(Stage.ASSIGN)
            labels = await self.device.buffer(BufferName.ASSIGNMENTS).read_back(fence)
        finally:
            self.device.close()
        return labels.astype(np.int64)

    async def fit_async(self, X: np.ndarray, initial_centroids: np.ndarray) -> None:
        """Выполняет кластеризацию на устройстве с асинхронным чтением на хост."""
        X = np.asarray(X, dtype=np.float64)
        self.centroids = np.array(initial_centroids, dtype=np.float64, copy=True)
        self._reset_stats()
        self.t_h2d = 0.0
        self.t_d2h = 0.0

        if X.shape[0] == 0:
            self.labels = np.empty(0, dtype=np.int64)
            return

        with Timer() as t_h2d:
            self.device.open(X, self.centroids)
        self.t_h2d = float(t_h2d.elapsed)

        try:
            for i in range(self.n_iters):
                old_centroids = self.centroids

                new_centroids, t_assign, t_update = await self._iterate(X)

                self._record_timings(t_assign, t_update)
                self.n_iters_actual = i + 1

                max_change = max_centroid_movement(old_centroids, new_centroids)
                self.converged = has_converged(old_centroids, new_centroids, self.tol)
                self._log_iteration(i, t_assign, t_update, max_change)

                self.centroids = new_centroids

                if self.converged:
                    self._log_convergence(i, max_change)
                    break

                if self.variant is not KMeansAlgorithm.PARALLEL_CENTROIDS:
                    self.device.write_centroids(new_centroids)

            # B держит центроиды на устройстве; A и C не записали последние при сходимости
            if self.converged and self.variant is not KMeansAlgorithm.PARALLEL_CENTROIDS:
                self.device.write_centroids(self.centroids)

            with Timer() as t_d2h:
                fence = self.device.submit(Stage.ASSIGN)
                labels = await self.device.buffer(BufferName.ASSIGNMENTS).read_back(fence)
            self.t_d2h = float(t_d2h.elapsed)
            self.labels = labels.astype(np.int64)
        finally:
            self.device.close()

    async def _iterate(self, X: np.ndarray) -> Tuple[np.ndarray, float, float]:
        """Одна итерация: dispatch + чтение на хост, затем шаг обновления на хосте."""
        device = self.device

        with Timer() as t_assign:
            if self.variant is KMeansAlgorithm.PARALLEL_ASSIGNMENTS:
                fence = device.submit(Stage.ASSIGN)
                payload = await device.buffer(BufferName.ASSIGNMENTS).read_back(fence)
            elif self.variant is KMeansAlgorithm.PARALLEL_CENTROIDS:
                await device.submit(Stage.ACCUMULATE)
                fence = device.submit(Stage.RESOLVE)
                payload = await device.buffer(BufferName.CENTROIDS).read_back(fence)
            else:
                fence = device.submit(Stage.ACCUMULATE)
                payload = await device.buffer(BufferName.AGGREGATES).read_back(fence)

        with Timer() as t_update:
            if self.variant is KMeansAlgorithm.PARALLEL_ASSIGNMENTS:
                new_centroids = self.update_centroids(X, payload.astype(np.int64))
            elif self.variant is KMeansAlgorithm.PARALLEL_CENTROIDS:
                new_centroids = payload
            else:
                D = X.shape[1]
                new_centroids = self._merge_centroids(payload[:, :D], payload[:, D])

        return new_centroids, float(t_assign.elapsed), float(t_update.elapsed)
