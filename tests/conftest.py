"""
Общие фикстуры для всех тестов.
"""

import numpy as np
import pytest
from sklearn.datasets import make_blobs

BLOB_CENTERS = np.array([
    [30.0, 30.0, 30.0],
    [200.0, 40.0, 40.0],
    [40.0, 200.0, 90.0],
    [90.0, 60.0, 220.0],
])


def integer_colors(n_samples, centers, cluster_std, random_state):
    """Целочисленные цвета в [0, 255]: суммы по кластерам считаются точно."""
    X, _ = make_blobs(
        n_samples=n_samples,
        centers=centers,
        cluster_std=cluster_std,
        random_state=random_state,
    )
    return np.clip(np.rint(X), 0, 255)


@pytest.fixture
def color_blobs():
    """Четыре хорошо разделённых кластера цветов RGB и начальные центроиды."""
    X = integer_colors(600, BLOB_CENTERS, cluster_std=8.0, random_state=42)
    initial_centroids = np.array([
        [20.0, 20.0, 20.0],
        [210.0, 50.0, 50.0],
        [50.0, 210.0, 80.0],
        [80.0, 50.0, 230.0],
    ])
    return X, initial_centroids


@pytest.fixture
def overlapping_colors():
    """Перекрывающиеся кластеры: алгоритму нужно несколько итераций."""
    X = integer_colors(900, BLOB_CENTERS[:3], cluster_std=45.0, random_state=7)
    initial_centroids = X[[0, 1, 2, 3, 4]].copy()
    return X, initial_centroids


@pytest.fixture
def simple_colors():
    """Очень простой набор для базовых тестов: две группы цветов."""
    X = np.array([
        [0.0, 0.0, 0.0],
        [2.0, 2.0, 2.0],
        [4.0, 4.0, 4.0],
        [250.0, 250.0, 250.0],
        [252.0, 252.0, 252.0],
        [254.0, 254.0, 254.0],
    ])
    initial_centroids = np.array([
        [1.0, 1.0, 1.0],
        [251.0, 251.0, 251.0],
    ])
    return X, initial_centroids


@pytest.fixture
def rgba_image():
    """Буфер RGBA 8x8 с градиентом и переменной альфой."""
    rng = np.random.default_rng(3)
    rgb = rng.integers(0, 256, size=(64, 3), dtype=np.uint8)
    alpha = np.arange(64, dtype=np.uint8)[:, None] * 4
    return np.hstack([rgb, alpha]).reshape(-1).tobytes()
