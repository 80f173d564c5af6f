# core/lloyd.py
from __future__ import annotations

import numpy as np

from .base import KMeansBase
from .distance import nearest_centroids


class KMeansLloyd(KMeansBase):
    """Простая однопоточная реализация KMeans на NumPy (baseline, полный перебор)."""

    def assign_clusters(self, X: np.ndarray, centroids: np.ndarray) -> np.ndarray:
        # (N, K) расстояний по батчам → argmin
        return nearest_centroids(X, centroids)
