"""
Квантование изображения: сокращение палитры через KMeans.

Кластеризация идёт по выборке пикселей (каждый sample_rate-й), замена
цвета - по всем пикселям. Если в выборке уже не больше max_colors
различных цветов, изображение возвращается без изменений.
"""

from __future__ import annotations

import logging
from typing import Any, List, Tuple

import numpy as np

from colorcrunch.core.config import (
    DEFAULT_ALGORITHM,
    DEFAULT_INITIALIZER,
    DEFAULT_K,
    DEFAULT_MAX_ITERATIONS,
    DEFAULT_TOLERANCE,
    DeviceConfig,
    KMeansConfig,
)
from colorcrunch.core.kmeans import KMeans
from colorcrunch.data.pixels import (
    all_colors,
    apply_palette,
    as_pixel_rows,
    palette_to_bytes,
    sample_colors,
)
from colorcrunch.data.validation import count_distinct_colors, validate_pixel_buffer
from colorcrunch.utils.logging import get_logger

RGB = Tuple[int, int, int]


class ColorCruncher:
    """Квантователь цветов для буферов RGB/RGBA."""

    def __init__(
        self,
        config: KMeansConfig | None = None,
        channels: int = 3,
        sample_rate: int = 1,
        logger: logging.Logger | None = None,
    ) -> None:
        validate_pixel_buffer(0, channels, sample_rate)
        self.config = config or KMeansConfig()
        self.channels = channels
        self.sample_rate = sample_rate
        self.logger = logger if logger is not None else get_logger()
        self.kmeans = KMeans(self.config, logger=self.logger)

    @classmethod
    def from_options(
        cls,
        max_colors: int = DEFAULT_K,
        channels: int = 3,
        sample_rate: int = 1,
        tolerance: float = DEFAULT_TOLERANCE,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        algorithm: Any = DEFAULT_ALGORITHM,
        initializer: Any = DEFAULT_INITIALIZER,
        seed: int | None = None,
        device: Any = None,
        logger: logging.Logger | None = None,
    ) -> "ColorCruncher":
        config = KMeansConfig(
            k=max_colors,
            max_iterations=max_iterations,
            tolerance=tolerance,
            algorithm=algorithm,
            initializer=initializer,
            seed=seed,
            device=device if device is not None else DeviceConfig(),
        )
        return cls(config, channels=channels, sample_rate=sample_rate, logger=logger)

    @property
    def max_colors(self) -> int:
        return self.config.k

    # --- Квантование ---

    def quantize_image(self, pixels: Any) -> bytes:
        """
        Буфер той же длины и раскладки с цветами из палитры.

        На параллельных движках кластеризация выборки и замена цветов всех
        пикселей идут двумя сессиями устройства (у HostDevice это два пула
        процессов): буферы устройства рассчитаны на одно число точек.
        """
        rows, sample = self._sample(pixels)
        if self._within_budget(sample):
            return rows.tobytes()
        result = self.kmeans.run(sample)
        return self.remap(rows, result.centroids)

    async def quantize_image_async(self, pixels: Any) -> bytes:
        rows, sample = self._sample(pixels)
        if self._within_budget(sample):
            return rows.tobytes()
        result = await self.kmeans.run_async(sample)
        return await self.remap_async(rows, result.centroids)

    def remap(self, pixels: Any, centroids: np.ndarray) -> bytes:
        """
        Заменяет цвет каждого пикселя ближайшим цветом палитры центроидов.

        Пиксели сравниваются с уже округлёнными 8-битными цветами палитры,
        поэтому повторная замена с теми же центроидами ничего не меняет.
        """
        rows = as_pixel_rows(pixels, self.channels)
        palette = palette_to_bytes(np.asarray(centroids, dtype=np.float64))
        labels = self.kmeans.assign(all_colors(rows), palette.astype(np.float64))
        return self._write(rows, labels, palette)

    async def remap_async(self, pixels: Any, centroids: np.ndarray) -> bytes:
        rows = as_pixel_rows(pixels, self.channels)
        palette = palette_to_bytes(np.asarray(centroids, dtype=np.float64))
        labels = await self.kmeans.assign_async(all_colors(rows), palette.astype(np.float64))
        return self._write(rows, labels, palette)

    # --- Палитра ---

    def create_palette(self, pixels: Any) -> List[RGB]:
        """Палитра из не более чем max_colors цветов RGB."""
        _, sample = self._sample(pixels)
        if self._within_budget(sample):
            return self._distinct_palette(sample)
        return self._to_triples(palette_to_bytes(self.kmeans.run(sample).centroids))

    async def create_palette_async(self, pixels: Any) -> List[RGB]:
        _, sample = self._sample(pixels)
        if self._within_budget(sample):
            return self._distinct_palette(sample)
        result = await self.kmeans.run_async(sample)
        return self._to_triples(palette_to_bytes(result.centroids))

    # --- Внутреннее ---

    def _sample(self, pixels: Any) -> Tuple[np.ndarray, np.ndarray]:
        rows = as_pixel_rows(pixels, self.channels)
        return rows, sample_colors(rows, self.sample_rate)

    def _within_budget(self, sample: np.ndarray) -> bool:
        distinct = count_distinct_colors(sample)
        if distinct <= self.max_colors:
            self.logger.debug(
                f"Sample has {distinct} distinct colors (max_colors={self.max_colors}), "
                f"image left unchanged"
            )
            return True
        return False

    def _write(self, rows: np.ndarray, labels: np.ndarray, palette: np.ndarray) -> bytes:
        self.logger.info(
            f"Quantized {rows.shape[0]} pixels to {len(np.unique(labels))} colors"
        )
        return apply_palette(rows, labels, palette)

    def _distinct_palette(self, sample: np.ndarray) -> List[RGB]:
        if sample.shape[0] == 0:
            return []
        return self._to_triples(palette_to_bytes(np.unique(sample, axis=0)))

    @staticmethod
    def _to_triples(palette: np.ndarray) -> List[RGB]:
        return [(int(r), int(g), int(b)) for r, g, b in palette]
