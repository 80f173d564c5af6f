"""
Тесты фасада KMeans: предусловия, пустой вход, сценарии использования.
"""

import asyncio
import logging

import numpy as np
import pytest
from colorcrunch.core.config import DeviceConfig, KMeansAlgorithm, KMeansConfig
from colorcrunch.core.errors import AcceleratorError, KMeansConfigError
from colorcrunch.core.device import gpu_available
from colorcrunch.core.hamerly import KMeansHamerly
from colorcrunch.core.kmeans import KMeans, KMeansResult
from colorcrunch.core.lloyd import KMeansLloyd
from colorcrunch.core.parallel import KMeansParallel

HOST = DeviceConfig(n_workers=2, batch_size=64)
ALL_CONFIGS = [KMeansConfig(algorithm=a, seed=42, device=HOST) for a in KMeansAlgorithm]
PURE_COLORS = np.array([[255.0, 0.0, 0.0], [0.0, 255.0, 0.0], [0.0, 0.0, 255.0]])


@pytest.mark.parametrize("config", ALL_CONFIGS, ids=lambda c: c.algorithm.value)
class TestScenarios:
    """Сценарии A-D для каждого движка."""

    def test_pure_colors(self, config):
        """Три чистых цвета, k=3: каждый центроид совпадает с одним цветом."""
        result = KMeans(config.with_k(3)).run(PURE_COLORS)

        assert isinstance(result, KMeansResult)
        assert sorted(result.assignments.tolist()) == [0, 1, 2]
        for color in PURE_COLORS:
            distances = np.sqrt(((result.centroids - color) ** 2).sum(axis=1))
            assert distances.min() < config.tolerance

    def test_single_repeated_color(self, config):
        data = np.full((3, 3), 100.0)
        result = KMeans(config.with_k(1)).run(data)

        np.testing.assert_allclose(result.centroids, [[100.0, 100.0, 100.0]])
        np.testing.assert_array_equal(result.assignments, [0, 0, 0])

    def test_not_enough_colors(self, config):
        data = [[255, 0, 0], [0, 255, 0]]
        with pytest.raises(KMeansConfigError, match="2") as excinfo:
            KMeans(config.with_k(3)).run(data)
        assert excinfo.value.distinct_colors == 2

    def test_empty_input(self, config):
        result = KMeans(config).run(np.empty((0, 3)))
        assert result.assignments.shape == (0,)
        assert result.centroids.shape == (0, 3)

    def test_run_async(self, config, color_blobs):
        X, _ = color_blobs
        kmeans = KMeans(config.with_k(4))
        result = asyncio.run(kmeans.run_async(X))
        expected = kmeans.run(X)

        np.testing.assert_array_equal(result.centroids, expected.centroids)
        np.testing.assert_array_equal(result.assignments, expected.assignments)

    def test_assign(self, config, color_blobs):
        X, centroids = color_blobs
        kmeans = KMeans(config.with_k(4))
        expected = KMeansLloyd(4).assign_clusters(X, centroids)

        np.testing.assert_array_equal(kmeans.assign(X, centroids), expected)
        np.testing.assert_array_equal(asyncio.run(kmeans.assign_async(X, centroids)), expected)


class TestKMeansFacade:
    def test_engine_selection(self):
        assert isinstance(KMeans(KMeansConfig.lloyd(2)).engine, KMeansLloyd)
        assert isinstance(KMeans(KMeansConfig.hamerly(2)).engine, KMeansHamerly)
        engine = KMeans(KMeansConfig.parallel(2, device=HOST)).engine
        assert isinstance(engine, KMeansParallel)
        assert engine.variant is KMeansAlgorithm.PARALLEL_AGGREGATES

    def test_four_channel_points(self):
        data = np.array([
            [0.0, 0.0, 0.0, 255.0],
            [2.0, 2.0, 2.0, 255.0],
            [250.0, 250.0, 250.0, 0.0],
            [252.0, 252.0, 252.0, 0.0],
        ])
        result = KMeans(KMeansConfig(k=2, seed=1)).run(data)
        assert result.centroids.shape == (2, 4)
        assert result.assignments[0] == result.assignments[1]
        assert result.assignments[2] == result.assignments[3]
        assert result.assignments[0] != result.assignments[2]

    @pytest.mark.parametrize("shape", [(5,), (4, 2), (4, 5), (2, 3, 3)])
    def test_invalid_shape(self, shape):
        with pytest.raises(ValueError):
            KMeans(KMeansConfig(k=1)).run(np.zeros(shape))

    def test_non_finite_points(self):
        data = np.array([[0.0, 0.0, np.nan], [1.0, 1.0, 1.0]])
        with pytest.raises(ValueError):
            KMeans(KMeansConfig(k=1)).run(data)

    def test_assign_shape_mismatch(self):
        with pytest.raises(ValueError):
            KMeans().assign(PURE_COLORS, np.zeros((2, 4)))

    def test_input_not_mutated(self, color_blobs):
        X, _ = color_blobs
        before = X.copy()
        KMeans(KMeansConfig(k=4, seed=0)).run(X)
        np.testing.assert_array_equal(X, before)

    def test_iteration_cap(self, overlapping_colors):
        X, _ = overlapping_colors
        kmeans = KMeans(KMeansConfig(k=6, seed=5, max_iterations=2))
        kmeans.run(X)
        assert kmeans.engine.n_iters_actual <= 2

    def test_run_logging_prefix(self, color_blobs, caplog):
        X, _ = color_blobs
        logger = logging.getLogger("test_facade_prefix")
        with caplog.at_level(logging.INFO, logger="test_facade_prefix"):
            KMeans(KMeansConfig.hamerly(4, seed=0), logger=logger).run(X)

        messages = [r.message for r in caplog.records]
        assert any(m.startswith("[N=600 D=3 K=4 algorithm=hamerly]") for m in messages)

    @pytest.mark.skipif(gpu_available(), reason="GPU доступен")
    def test_cuda_rejected_at_construction(self):
        with pytest.raises(AcceleratorError):
            KMeans(KMeansConfig.parallel(2, device="cuda"))
