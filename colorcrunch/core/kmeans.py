"""
Единая точка входа для всех движков KMeans.

KMeans выбирает движок по ``config.algorithm``, проверяет входные точки,
инициализирует центроиды из seed и возвращает KMeansResult. Параллельные
варианты создают устройство в конструкторе: недоступный ускоритель
приводит к ошибке сразу, а не во время запуска.
"""

from __future__ import annotations

import logging
from typing import Any, NamedTuple

import numpy as np

from colorcrunch.core.base import KMeansBase
from colorcrunch.core.config import KMeansAlgorithm, KMeansConfig
from colorcrunch.core.device import make_device
from colorcrunch.core.distance import nearest_centroids
from colorcrunch.core.errors import KMeansConfigError
from colorcrunch.core.hamerly import KMeansHamerly
from colorcrunch.core.initializer import initialize_centroids
from colorcrunch.core.lloyd import KMeansLloyd
from colorcrunch.core.parallel import KMeansParallel
from colorcrunch.data.validation import count_distinct_colors, validate_points
from colorcrunch.metrics.timers import Timer
from colorcrunch.utils.logging import PrefixedLogger, format_run_prefix, get_logger


class KMeansResult(NamedTuple):
    """Результат запуска: метки (N,) и центроиды (k, D)."""

    assignments: np.ndarray
    centroids: np.ndarray


def build_engine(config: KMeansConfig, logger: Any | None = None) -> KMeansBase:
    """Создаёт движок, соответствующий ``config.algorithm``."""
    common = dict(n_clusters=config.k, n_iters=config.max_iterations, tol=config.tolerance)
    if config.algorithm is KMeansAlgorithm.LLOYD:
        return KMeansLloyd(logger=logger, **common)
    if config.algorithm is KMeansAlgorithm.HAMERLY:
        return KMeansHamerly(logger=logger, **common)
    return KMeansParallel(
        variant=config.algorithm,
        device=make_device(config.device, logger=logger),
        logger=logger,
        **common,
    )


class KMeans:
    """
    Фасад над движками KMeans.

    Пример:
        result = KMeans(KMeansConfig.hamerly(k=16, seed=42)).run(colors)
        result.assignments, result.centroids
    """

    def __init__(self, config: KMeansConfig | None = None, logger: logging.Logger | None = None):
        self.config = config or KMeansConfig()
        self.logger = logger if logger is not None else get_logger()
        self.engine = build_engine(self.config, logger=self.logger)
        # Время последнего запуска (инициализация + итерации)
        self.t_run: float = 0.0

    @property
    def is_parallel(self) -> bool:
        return self.config.algorithm.is_parallel

    # --- Кластеризация ---

    def run(self, data: Any) -> KMeansResult:
        """Блокирующий запуск кластеризации (из корутины нужен run_async)."""
        X, initial = self._prepare(data)
        if X.shape[0] == 0:
            return self._empty_result(X)

        with Timer() as t_run:
            self.engine.fit(X, initial)
        return self._finish(t_run)

    async def run_async(self, data: Any) -> KMeansResult:
        """
        Запуск с приостановками на каждом чтении с устройства.

        Последовательные движки выполняются целиком без приостановок.
        """
        X, initial = self._prepare(data)
        if X.shape[0] == 0:
            return self._empty_result(X)

        with Timer() as t_run:
            if isinstance(self.engine, KMeansParallel):
                await self.engine.fit_async(X, initial)
            else:
                self.engine.fit(X, initial)
        return self._finish(t_run)

    # --- Назначение по готовым центроидам ---

    def assign(self, data: Any, centroids: np.ndarray) -> np.ndarray:
        """Метки ближайших центроидов на выбранном движке."""
        X, C = self._prepare_assign(data, centroids)
        if X.shape[0] == 0:
            return np.empty(0, dtype=np.int64)
        if isinstance(self.engine, KMeansParallel):
            return self.engine.assign_clusters(X, C)
        return nearest_centroids(X, C)

    async def assign_async(self, data: Any, centroids: np.ndarray) -> np.ndarray:
        X, C = self._prepare_assign(data, centroids)
        if X.shape[0] == 0:
            return np.empty(0, dtype=np.int64)
        if isinstance(self.engine, KMeansParallel):
            return await self.engine.assign_clusters_async(X, C)
        return nearest_centroids(X, C)

    # --- Внутреннее ---

    def _prepare(self, data: Any) -> tuple[np.ndarray, np.ndarray]:
        """
        Проверка точек и выбор начальных центроидов.

        Raises:
            ValueError: Неверная форма точек
            KMeansConfigError: Различных цветов меньше, чем k
        """
        X = validate_points(data)
        N, D = X.shape
        if N == 0:
            return X, np.empty((0, D), dtype=np.float64)

        distinct = count_distinct_colors(X)
        if distinct < self.config.k:
            raise KMeansConfigError.not_enough_colors(distinct)

        meta = {"N": N, "D": D, "K": self.config.k, "algorithm": self.config.algorithm.value}
        run_logger = PrefixedLogger(self.logger, format_run_prefix(meta))
        self.engine.logger = run_logger
        run_logger.debug(f"  distinct colors: {distinct}, seed: {self.config.seed}")

        initial = initialize_centroids(X, self.config.k, self.config.initializer, self.config.seed)
        return X, initial

    def _prepare_assign(self, data: Any, centroids: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        X = validate_points(data)
        C = np.asarray(centroids, dtype=np.float64)
        if C.ndim != 2 or C.shape[0] == 0 or C.shape[1] != X.shape[1]:
            raise ValueError(
                f"Centroids of shape {C.shape} do not match points of shape {X.shape}"
            )
        return X, C

    def _empty_result(self, X: np.ndarray) -> KMeansResult:
        self.t_run = 0.0
        return KMeansResult(
            assignments=np.empty(0, dtype=np.int64),
            centroids=np.empty((0, X.shape[1]), dtype=np.float64),
        )

    def _finish(self, t_run: Timer) -> KMeansResult:
        self.t_run = float(t_run.elapsed)
        engine = self.engine
        if engine.logger:
            status = "converged" if engine.converged else "stopped at iteration cap"
            engine.logger.info(
                f"  Done in {self.t_run:.6f}s: {engine.n_iters_actual} iterations, {status}"
            )
        return KMeansResult(
            assignments=engine.labels.copy(),
            centroids=engine.centroids.copy(),
        )
