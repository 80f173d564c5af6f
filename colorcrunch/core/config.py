from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

from colorcrunch.core.errors import KMeansConfigError


class KMeansAlgorithm(str, Enum):
    LLOYD = "lloyd"
    HAMERLY = "hamerly"
    # Параллельные варианты отличаются тем, что считается на устройстве
    # за один dispatch и что читается обратно на хост.
    PARALLEL_ASSIGNMENTS = "parallel-assignments"
    PARALLEL_CENTROIDS = "parallel-centroids"
    PARALLEL_AGGREGATES = "parallel-aggregates"

    @property
    def is_parallel(self) -> bool:
        return self.value.startswith("parallel-")


class Initializer(str, Enum):
    RANDOM = "random"
    KMEANS_PLUS_PLUS = "kmeans++"

    def initialize_centroids(self, data: Any, k: int, seed: int | None = None) -> Any:
        """Начальные центроиды выбранным способом (см. core.initializer)."""
        from colorcrunch.core.initializer import initialize_centroids

        return initialize_centroids(data, k, self, seed)


class DeviceKind(str, Enum):
    HOST = "host"
    CUDA = "cuda"


DEFAULT_K = 3
DEFAULT_MAX_ITERATIONS = 100
DEFAULT_TOLERANCE = 1e-4
DEFAULT_ALGORITHM = KMeansAlgorithm.LLOYD
DEFAULT_INITIALIZER = Initializer.KMEANS_PLUS_PLUS

_SEED_LIMIT = 2**64


def _coerce_enum(enum_cls: type[Enum], value: Any, name: str) -> Any:
    try:
        return enum_cls(value)
    except ValueError as exc:
        allowed = ", ".join(e.value for e in enum_cls)
        raise KMeansConfigError(
            f"Unknown {name} {value!r}, expected one of: {allowed}"
        ) from exc


@dataclass(frozen=True)
class DeviceConfig:
    """Параметры вычислительного устройства параллельного движка."""

    kind: DeviceKind = DeviceKind.HOST
    n_workers: int = 4
    batch_size: int = 16_384

    def __post_init__(self) -> None:
        object.__setattr__(self, "kind", _coerce_enum(DeviceKind, self.kind, "device"))
        if int(self.n_workers) < 1:
            raise KMeansConfigError(f"n_workers must be positive, got {self.n_workers}")
        if int(self.batch_size) < 1:
            raise KMeansConfigError(f"batch_size must be positive, got {self.batch_size}")


@dataclass(frozen=True)
class KMeansConfig:
    """
    Неизменяемая конфигурация одного запуска KMeans.

    Поля:
    - k: число кластеров (размер палитры);
    - max_iterations: ограничение на число итераций;
    - tolerance: порог сходимости, сравнивается с квадратом смещения
      центроида (distance < tolerance**2);
    - algorithm: движок (baseline, accelerated или параллельный вариант);
    - initializer: способ выбора начальных центроидов;
    - seed: зерно генератора (None - энтропия ОС);
    - device: устройство для параллельных вариантов.

    Методы ``with_*`` возвращают новую конфигурацию (последняя запись
    побеждает), незаданные поля берут значения по умолчанию.
    """

    k: int = DEFAULT_K
    max_iterations: int = DEFAULT_MAX_ITERATIONS
    tolerance: float = DEFAULT_TOLERANCE
    algorithm: KMeansAlgorithm = DEFAULT_ALGORITHM
    initializer: Initializer = DEFAULT_INITIALIZER
    seed: int | None = None
    device: DeviceConfig = field(default_factory=DeviceConfig)

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "algorithm", _coerce_enum(KMeansAlgorithm, self.algorithm, "algorithm")
        )
        object.__setattr__(
            self, "initializer", _coerce_enum(Initializer, self.initializer, "initializer")
        )
        if isinstance(self.device, (str, DeviceKind)):
            object.__setattr__(self, "device", DeviceConfig(kind=self.device))

        if int(self.k) < 1:
            raise KMeansConfigError(f"k must be a positive integer, got {self.k}")
        if int(self.max_iterations) < 1:
            raise KMeansConfigError(
                f"max_iterations must be a positive integer, got {self.max_iterations}"
            )
        if not float(self.tolerance) > 0.0:
            raise KMeansConfigError(f"tolerance must be positive, got {self.tolerance}")
        if self.seed is not None and not 0 <= int(self.seed) < _SEED_LIMIT:
            raise KMeansConfigError(f"seed must fit into 64 bits, got {self.seed}")

    # --- Именованные конструкторы ---

    @classmethod
    def lloyd(cls, k: int = DEFAULT_K, **kwargs: Any) -> "KMeansConfig":
        return cls(k=k, algorithm=KMeansAlgorithm.LLOYD, **kwargs)

    @classmethod
    def hamerly(cls, k: int = DEFAULT_K, **kwargs: Any) -> "KMeansConfig":
        return cls(k=k, algorithm=KMeansAlgorithm.HAMERLY, **kwargs)

    @classmethod
    def parallel(
        cls,
        k: int = DEFAULT_K,
        variant: KMeansAlgorithm | str = KMeansAlgorithm.PARALLEL_AGGREGATES,
        **kwargs: Any,
    ) -> "KMeansConfig":
        algorithm = _coerce_enum(KMeansAlgorithm, variant, "algorithm")
        if not algorithm.is_parallel:
            raise KMeansConfigError(f"{algorithm.value!r} is not a parallel variant")
        return cls(k=k, algorithm=algorithm, **kwargs)

    # --- Builder-style ---

    def with_k(self, k: int) -> "KMeansConfig":
        return replace(self, k=k)

    def with_max_iterations(self, max_iterations: int) -> "KMeansConfig":
        return replace(self, max_iterations=max_iterations)

    def with_tolerance(self, tolerance: float) -> "KMeansConfig":
        return replace(self, tolerance=tolerance)

    def with_algorithm(self, algorithm: KMeansAlgorithm | str) -> "KMeansConfig":
        return replace(self, algorithm=algorithm)

    def with_initializer(self, initializer: Initializer | str) -> "KMeansConfig":
        return replace(self, initializer=initializer)

    def with_seed(self, seed: int | None) -> "KMeansConfig":
        return replace(self, seed=seed)

    def with_device(self, device: DeviceConfig | DeviceKind | str) -> "KMeansConfig":
        return replace(self, device=device)
