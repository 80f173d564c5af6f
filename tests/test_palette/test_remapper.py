"""
Тесты квантования изображений ColorCruncher.
"""

import asyncio

import numpy as np
import pytest
from colorcrunch.core.config import DeviceConfig, KMeansAlgorithm, KMeansConfig
from colorcrunch.palette.remapper import ColorCruncher


def two_tone_image(channels=3):
    """Два цвета с небольшим шумом: 32 тёмных и 32 светлых пикселя."""
    rng = np.random.default_rng(0)
    dark = rng.integers(0, 12, size=(32, 3))
    light = rng.integers(240, 256, size=(32, 3))
    rgb = np.vstack([dark, light]).astype(np.uint8)
    if channels == 4:
        alpha = np.arange(64, dtype=np.uint8)[:, None]
        rgb = np.hstack([rgb, alpha])
    return rgb.reshape(-1).tobytes()


class TestQuantizeImage:
    def test_within_budget_is_unchanged(self):
        """RGBA-изображение в пределах палитры возвращается байт в байт."""
        pixels = bytes([255, 0, 0, 10, 0, 255, 0, 20, 255, 0, 0, 30, 0, 0, 255, 40])
        cruncher = ColorCruncher.from_options(max_colors=3, channels=4)
        assert cruncher.quantize_image(pixels) == pixels

    def test_empty_image(self):
        assert ColorCruncher.from_options(max_colors=2).quantize_image(b"") == b""

    def test_two_tones(self):
        pixels = two_tone_image()
        cruncher = ColorCruncher.from_options(max_colors=2, seed=1)
        out = np.frombuffer(cruncher.quantize_image(pixels), dtype=np.uint8).reshape(-1, 3)

        assert len(out) == 64
        assert np.unique(out, axis=0).shape[0] == 2
        # Тёмные остаются тёмными, светлые светлыми
        assert np.all(out[:32] < 12)
        assert np.all(out[32:] >= 240)

    def test_alpha_passthrough(self):
        pixels = two_tone_image(channels=4)
        cruncher = ColorCruncher.from_options(max_colors=2, channels=4, seed=1)
        out = np.frombuffer(cruncher.quantize_image(pixels), dtype=np.uint8).reshape(-1, 4)
        src = np.frombuffer(pixels, dtype=np.uint8).reshape(-1, 4)

        assert len(out) == len(src)
        np.testing.assert_array_equal(out[:, 3], src[:, 3])

    def test_idempotent(self, rgba_image):
        cruncher = ColorCruncher.from_options(max_colors=4, channels=4, seed=3)
        once = cruncher.quantize_image(rgba_image)
        assert cruncher.quantize_image(once) == once

    def test_sample_rate_still_remaps_every_pixel(self, rgba_image):
        cruncher = ColorCruncher.from_options(max_colors=4, channels=4, sample_rate=3, seed=3)
        out = np.frombuffer(cruncher.quantize_image(rgba_image), dtype=np.uint8).reshape(-1, 4)
        assert np.unique(out[:, :3], axis=0).shape[0] <= 4

    def test_deterministic(self, rgba_image):
        first = ColorCruncher.from_options(max_colors=5, channels=4, seed=8)
        second = ColorCruncher.from_options(max_colors=5, channels=4, seed=8)
        assert first.quantize_image(rgba_image) == second.quantize_image(rgba_image)

    @pytest.mark.parametrize(
        "algorithm", [KMeansAlgorithm.HAMERLY, KMeansAlgorithm.PARALLEL_AGGREGATES]
    )
    def test_backends_agree(self, rgba_image, algorithm):
        baseline = ColorCruncher.from_options(max_colors=4, channels=4, seed=12)
        other = ColorCruncher.from_options(
            max_colors=4,
            channels=4,
            seed=12,
            algorithm=algorithm,
            device=DeviceConfig(n_workers=2, batch_size=16),
        )
        assert other.quantize_image(rgba_image) == baseline.quantize_image(rgba_image)

    def test_async(self, rgba_image):
        cruncher = ColorCruncher(
            KMeansConfig.parallel(4, seed=2, device=DeviceConfig(n_workers=2)), channels=4
        )
        assert asyncio.run(cruncher.quantize_image_async(rgba_image)) == (
            cruncher.quantize_image(rgba_image)
        )

    def test_invalid_buffer(self):
        with pytest.raises(ValueError):
            ColorCruncher.from_options(channels=4).quantize_image(bytes(6))

    def test_invalid_options(self):
        with pytest.raises(ValueError):
            ColorCruncher(channels=5)
        with pytest.raises(ValueError):
            ColorCruncher(sample_rate=0)


class TestCreatePalette:
    def test_palette_size_and_type(self, rgba_image):
        cruncher = ColorCruncher.from_options(max_colors=4, channels=4, seed=3)
        palette = cruncher.create_palette(rgba_image)

        assert len(palette) == 4
        for color in palette:
            assert len(color) == 3
            assert all(isinstance(c, int) and 0 <= c <= 255 for c in color)

    def test_palette_matches_quantized_colors(self, rgba_image):
        cruncher = ColorCruncher.from_options(max_colors=4, channels=4, seed=3)
        palette = set(cruncher.create_palette(rgba_image))
        out = np.frombuffer(cruncher.quantize_image(rgba_image), dtype=np.uint8).reshape(-1, 4)
        used = {tuple(int(c) for c in row) for row in out[:, :3]}
        assert used <= palette

    def test_within_budget_returns_distinct_colors(self):
        pixels = bytes([255, 0, 0, 0, 255, 0, 255, 0, 0])
        palette = ColorCruncher.from_options(max_colors=5).create_palette(pixels)
        assert sorted(palette) == [(0, 255, 0), (255, 0, 0)]

    def test_async(self, rgba_image):
        cruncher = ColorCruncher.from_options(max_colors=3, channels=4, seed=4)
        assert asyncio.run(cruncher.create_palette_async(rgba_image)) == (
            cruncher.create_palette(rgba_image)
        )


class TestRemap:
    """Замена цветов по готовым центроидам."""

    # Близкие центроиды: после округления цвет первого ближе ко второму
    CENTROIDS = np.array([[10.49, 10.49, 10.49], [10.0, 10.0, 9.4], [200.0, 200.0, 200.0]])
    PIXELS = bytes([11, 11, 11, 10, 10, 8, 201, 199, 200])

    def test_remap_is_stable_under_same_centroids(self):
        cruncher = ColorCruncher.from_options(max_colors=3)
        once = cruncher.remap(self.PIXELS, self.CENTROIDS)
        twice = cruncher.remap(once, self.CENTROIDS)

        assert once == bytes([10, 10, 10, 10, 10, 9, 200, 200, 200])
        assert twice == once

    def test_output_uses_palette_colors(self, rgba_image):
        cruncher = ColorCruncher.from_options(max_colors=3, channels=4)
        out = np.frombuffer(cruncher.remap(rgba_image, self.CENTROIDS), dtype=np.uint8)
        colors = {tuple(int(c) for c in row) for row in out.reshape(-1, 4)[:, :3]}
        assert colors <= {(10, 10, 10), (10, 10, 9), (200, 200, 200)}

    def test_remap_async_on_parallel_backend(self):
        cruncher = ColorCruncher(
            KMeansConfig.parallel(3, device=DeviceConfig(n_workers=2)),
        )
        once = asyncio.run(cruncher.remap_async(self.PIXELS, self.CENTROIDS))
        assert once == cruncher.remap(self.PIXELS, self.CENTROIDS)
        assert asyncio.run(cruncher.remap_async(once, self.CENTROIDS)) == once

    def test_parallel_quantize_releases_device(self, rgba_image):
        """Обе сессии устройства (кластеризация и замена) закрываются."""
        cruncher = ColorCruncher(
            KMeansConfig.parallel(4, seed=2, device=DeviceConfig(n_workers=2)), channels=4
        )
        cruncher.quantize_image(rgba_image)
        assert not cruncher.kmeans.engine.device.is_open
