"""
Представление буфера пикселей для кластеризации и обратной замены цветов.

Буфер - плоская последовательность байтов с чередующимися каналами
(RGB или RGBA). В кластеризации участвуют только цветовые каналы,
альфа-канал копируется без изменений.
"""

from __future__ import annotations

from typing import Any

import numpy as np

from colorcrunch.data.validation import validate_pixel_buffer

COLOR_CHANNELS = 3


def as_pixel_rows(pixels: Any, channels: int) -> np.ndarray:
    """
    Представление буфера в виде массива (M, channels) uint8 без копирования.

    Принимает bytes, bytearray, memoryview или numpy-массив uint8.
    """
    if isinstance(pixels, np.ndarray):
        flat = np.ascontiguousarray(pixels, dtype=np.uint8).reshape(-1)
    else:
        flat = np.frombuffer(pixels, dtype=np.uint8)
    validate_pixel_buffer(flat.size, channels, 1)
    return flat.reshape(-1, channels)


def sample_colors(rows: np.ndarray, sample_rate: int = 1) -> np.ndarray:
    """Цветовые векторы каждого sample_rate-го пикселя (m, 3) float64."""
    if sample_rate < 1:
        raise ValueError(f"sample_rate must be positive, got {sample_rate}")
    return rows[::sample_rate, :COLOR_CHANNELS].astype(np.float64)


def all_colors(rows: np.ndarray) -> np.ndarray:
    """Цветовые векторы всех пикселей (M, 3) float64."""
    return rows[:, :COLOR_CHANNELS].astype(np.float64)


def palette_to_bytes(centroids: np.ndarray) -> np.ndarray:
    """Центроиды → 8-битные цвета палитры (округление и обрезка в [0, 255])."""
    return np.clip(np.rint(centroids[:, :COLOR_CHANNELS]), 0, 255).astype(np.uint8)


def apply_palette(rows: np.ndarray, labels: np.ndarray, palette: np.ndarray) -> bytes:
    """
    Заменяет цвет каждого пикселя цветом палитры по его метке.

    Дополнительный канал (альфа) копируется без изменений; длина и
    раскладка результата совпадают с входом.
    """
    out = rows.copy()
    out[:, :COLOR_CHANNELS] = palette[labels]
    return out.tobytes()
