"""
Проверка входных данных движков и буферов пикселей.

Модуль приводит точки к виду (N, D) float64 и считает точное число
различных цветов (по кортежам, без хеширования в скаляр).
"""

from __future__ import annotations

from typing import Any

import numpy as np

SUPPORTED_DIMS = (3, 4)
SUPPORTED_CHANNELS = (3, 4)


def validate_points(data: Any) -> np.ndarray:
    """
    Приводит точки к массиву (N, D) float64 с D из SUPPORTED_DIMS.

    Пустой вход допустим и возвращается как массив (0, 3).

    Raises:
        ValueError: Если форма не (N, 3)/(N, 4) или есть NaN/inf
    """
    X = np.asarray(data, dtype=np.float64)
    if X.size == 0 and X.ndim < 2:
        return X.reshape(0, SUPPORTED_DIMS[0])

    if X.ndim != 2 or X.shape[1] not in SUPPORTED_DIMS:
        raise ValueError(
            f"Expected color vectors of shape (N, 3) or (N, 4), got {X.shape}"
        )
    if not np.all(np.isfinite(X)):
        raise ValueError("Color vectors must be finite")
    return X


def count_distinct_colors(X: np.ndarray) -> int:
    """Точное количество различных строк (цветов) в массиве."""
    if X.shape[0] == 0:
        return 0
    return int(np.unique(X, axis=0).shape[0])


def validate_pixel_buffer(size: int, channels: int, sample_rate: int) -> None:
    """
    Проверяет параметры буфера пикселей.

    Args:
        size: Длина буфера в байтах
        channels: Число каналов на пиксель (3 или 4)
        sample_rate: Шаг выборки пикселей (1 = каждый пиксель)

    Raises:
        ValueError: Если параметры несовместимы
    """
    if channels not in SUPPORTED_CHANNELS:
        raise ValueError(f"channels must be 3 or 4, got {channels}")
    if sample_rate < 1:
        raise ValueError(f"sample_rate must be positive, got {sample_rate}")
    if size % channels != 0:
        raise ValueError(
            f"Buffer length {size} is not a multiple of channels={channels}"
        )
