"""
Метрика и критерий сходимости, общие для всех движков.

Все сравнения выполняются на квадратах евклидова расстояния: корень не
нужен для выбора ближайшего центроида и только добавляет погрешность.
"""

from __future__ import annotations

import numpy as np

# Ограничивает промежуточный (B, K, D) массив при назначении больших изображений
DEFAULT_BATCH_SIZE = 65_536


def squared_distance(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    """Сумма квадратов поканальных разностей (по последней оси)."""
    diff = np.asarray(a, dtype=np.float64) - np.asarray(b, dtype=np.float64)
    return np.sum(diff * diff, axis=-1)


def pairwise_squared_distances(X: np.ndarray, centroids: np.ndarray) -> np.ndarray:
    # (N, K, D) → (N, K)
    diff = X[:, None, :] - centroids[None, :, :]
    return np.sum(diff * diff, axis=2)


def nearest_centroids(
    X: np.ndarray,
    centroids: np.ndarray,
    batch_size: int = DEFAULT_BATCH_SIZE,
) -> np.ndarray:
    """
    Индекс ближайшего центроида для каждой точки.

    При равных расстояниях выбирается меньший индекс (поведение argmin).
    """
    N = X.shape[0]
    labels = np.empty(N, dtype=np.int64)
    for start in range(0, N, batch_size):
        stop = min(start + batch_size, N)
        distances = pairwise_squared_distances(X[start:stop], centroids)
        labels[start:stop] = np.argmin(distances, axis=1)
    return labels


def has_converged(old: np.ndarray, new: np.ndarray, tol: float) -> bool:
    """Все центроиды сместились меньше чем на tol (сравнение квадратов)."""
    return bool(np.all(squared_distance(old, new) < tol * tol))


def max_centroid_movement(old: np.ndarray, new: np.ndarray) -> float:
    """Наибольшее квадратичное смещение центроида за итерацию."""
    if len(old) == 0:
        return 0.0
    return float(np.max(squared_distance(old, new)))


def min_centroid_distance(centroids: np.ndarray) -> float:
    """Наименьший квадрат расстояния между двумя разными центроидами."""
    K = centroids.shape[0]
    if K < 2:
        return float("inf")
    distances = pairwise_squared_distances(centroids, centroids)
    distances[np.arange(K), np.arange(K)] = np.inf
    return float(np.min(distances))
