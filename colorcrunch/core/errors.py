"""
Исключения движка кластеризации.

- KMeansConfigError: нарушение конфигурации/предусловий (в т.ч. k больше
  числа различных цветов во входных данных);
- AcceleratorError: операционная ошибка вычислительного устройства
  (не удалось получить контекст, выполнить dispatch или отобразить буфер).
"""

from __future__ import annotations


class KMeansError(Exception):
    """Базовое исключение colorcrunch."""


class KMeansConfigError(KMeansError, ValueError):
    """
    Ошибка конфигурации или предусловия запуска.

    Если ошибка вызвана нехваткой различных цветов, в ``distinct_colors``
    хранится фактическое количество.
    """

    def __init__(self, message: str, distinct_colors: int | None = None) -> None:
        super().__init__(message)
        self.distinct_colors = distinct_colors

    @classmethod
    def not_enough_colors(cls, distinct_colors: int) -> "KMeansConfigError":
        return cls(
            f"Number of unique colors is less than k: {distinct_colors}",
            distinct_colors=distinct_colors,
        )


class AcceleratorError(KMeansError, RuntimeError):
    """Устройство недоступно или операция с его буферами не завершилась."""
