"""
Выбор начальных центроидов.

- Initializer.RANDOM: k различных точек, равномерно и без возвращения;
- Initializer.KMEANS_PLUS_PLUS: первая точка равномерно, каждая следующая -
  с вероятностью, пропорциональной квадрату расстояния до ближайшего уже
  выбранного центроида (накопленная сумма + порог).

Генератор - numpy.random.default_rng: с seed последовательность полностью
воспроизводима и одинакова для всех движков, без seed берётся энтропия ОС.
"""

from __future__ import annotations

import numpy as np

from colorcrunch.core.config import Initializer
from colorcrunch.core.distance import squared_distance


def make_rng(seed: int | None) -> np.random.Generator:
    return np.random.default_rng(seed)


def random_centroids(data: np.ndarray, k: int, rng: np.random.Generator) -> np.ndarray:
    N = data.shape[0]
    # С возвращением только если точек меньше k (фасад такого не допускает)
    idx = rng.choice(N, size=k, replace=k > N)
    return data[idx].copy()


def kmeans_plus_plus_centroids(
    data: np.ndarray, k: int, rng: np.random.Generator
) -> np.ndarray:
    N, D = data.shape
    centroids = np.empty((k, D), dtype=np.float64)
    centroids[0] = data[rng.integers(N)]

    # Квадрат расстояния до ближайшего выбранного центроида
    closest = squared_distance(data, centroids[0])

    for i in range(1, k):
        total = float(closest.sum())
        if total > 0.0:
            threshold = rng.random() * total
            cumulative = np.cumsum(closest)
            # side="right": точка с нулевым весом не может быть выбрана
            idx = int(np.searchsorted(cumulative, threshold, side="right"))
            if idx >= N:
                idx = int(np.flatnonzero(closest)[-1])
        else:
            # Все точки совпадают с уже выбранными центроидами
            idx = int(rng.integers(N))

        centroids[i] = data[idx]
        closest = np.minimum(closest, squared_distance(data, centroids[i]))

    return centroids


def initialize_centroids(
    data: np.ndarray,
    k: int,
    initializer: Initializer | str = Initializer.KMEANS_PLUS_PLUS,
    seed: int | None = None,
) -> np.ndarray:
    """
    Возвращает массив (k, D) начальных центроидов.

    Для пустых данных возвращается пустой массив (0, D) без ошибки.
    """
    X = np.asarray(data, dtype=np.float64)
    D = X.shape[1] if X.ndim == 2 else 0
    if X.shape[0] == 0:
        return np.empty((0, D), dtype=np.float64)

    rng = make_rng(seed)
    initializer = Initializer(initializer)
    if initializer is Initializer.RANDOM:
        return random_centroids(X, k, rng)
    return kmeans_plus_plus_centroids(X, k, rng)
