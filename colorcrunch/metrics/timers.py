"""
Таймеры для шагов движков KMeans (назначение, обновление, передачи).

Используется time.perf_counter(): монотонные часы высокого разрешения.
"""
from __future__ import annotations

import time
from typing import Any


class Timer:
    """
    Контекстный менеджер для замера одного участка кода.

    Повторное использование перезаписывает замер; ``total`` накапливает
    время всех замеров этим экземпляром.

    Пример:
        timer = Timer()
        with timer:
            engine.fit(X, centroids)
        timer.elapsed, timer.total
    """

    def __init__(self) -> None:
        self.start: float = 0.0
        self.end: float = 0.0
        self.elapsed: float = 0.0
        self.total: float = 0.0
        self.count: int = 0

    def __enter__(self) -> Timer:
        self.start = time.perf_counter()
        return self

    def __exit__(self, *args: Any) -> None:
        self.end = time.perf_counter()
        self.elapsed = self.end - self.start
        self.total += self.elapsed
        self.count += 1
