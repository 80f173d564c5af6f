"""
Вычислительные устройства параллельного движка.

Устройство владеет четырьмя буферами:
- points: точки (только чтение);
- centroids: центроиды (чтение/запись);
- assignments: метки точек (запись);
- aggregates: суммы каналов и счётчики по кластерам (атомарное накопление).

Работа отправляется стадиями (Stage) батчами фиксированного размера.
submit() возвращает Fence - сигнал завершения, который корутина ожидает без
активного опроса. Чтение на хост идёт через MappableBuffer: дождаться
fence → скопировать в staging → отобразить → скопировать → снять
отображение. Пока буфер отображён или dispatch не завершён, устройство не
принимает новую работу и не отдаёт буферы хосту.

HostDevice - пул процессов multiprocessing с буферами в shared memory
(используется по умолчанию). CudaDevice - см. core.cuda.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from contextlib import contextmanager
from enum import Enum
from multiprocessing import Array, Pool, RawArray, cpu_count
from typing import Any, Dict, Iterator, List, Optional, Tuple

import numpy as np

from colorcrunch.core.config import DeviceConfig, DeviceKind
from colorcrunch.core.distance import nearest_centroids
from colorcrunch.core.errors import AcceleratorError


class Stage(str, Enum):
    # метки точек → assignments
    ASSIGN = "assign"
    # метки → assignments, суммы и счётчики → aggregates
    ACCUMULATE = "accumulate"
    # aggregates → centroids (деление на устройстве)
    RESOLVE = "resolve"


class BufferName(str, Enum):
    POINTS = "points"
    CENTROIDS = "centroids"
    ASSIGNMENTS = "assignments"
    AGGREGATES = "aggregates"


class Fence:
    """
    Сигнал завершения работы, отправленной на устройство.

    signal()/fail() вызываются из любого потока (обработчик результатов
    пула, поток драйвера CUDA) и передают результат в цикл событий через
    call_soon_threadsafe.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop, label: str = "") -> None:
        self._loop = loop
        self._future: asyncio.Future = loop.create_future()
        self.label = label

    @classmethod
    def completed(cls, label: str = "") -> "Fence":
        fence = cls(asyncio.get_running_loop(), label)
        fence._future.set_result(None)
        return fence

    def signal(self, *_: Any) -> None:
        self._post(None)

    def fail(self, exc: BaseException) -> None:
        self._post(exc)

    def _post(self, exc: BaseException | None) -> None:
        try:
            self._loop.call_soon_threadsafe(self._resolve, exc)
        except RuntimeError:
            # Цикл событий уже закрыт: ожидающих корутин нет
            pass

    def _resolve(self, exc: BaseException | None) -> None:
        if self._future.done():
            return
        if exc is None:
            self._future.set_result(None)
            return
        error = AcceleratorError(f"Device work '{self.label}' failed: {exc}")
        error.__cause__ = exc
        self._future.set_exception(error)

    def done(self) -> bool:
        return self._future.done()

    def __await__(self):
        return self._future.__await__()


class MappableBuffer:
    """Буфер устройства со staging-копией на хосте."""

    def __init__(self, device: "ComputeDevice", name: BufferName, staging: np.ndarray) -> None:
        self._device = device
        self._staging = staging
        self.name = name
        self.is_mapped = False

    @contextmanager
    def mapped(self) -> Iterator[np.ndarray]:
        """Отображает staging-память для чтения хостом."""
        if self.is_mapped:
            raise AcceleratorError(f"Buffer '{self.name.value}' is already mapped")
        self.is_mapped = True
        try:
            view = self._staging.view()
            view.flags.writeable = False
            yield view
        finally:
            self.is_mapped = False

    async def read_back(self, fence: Fence | None = None) -> np.ndarray:
        """Дожидается dispatch и возвращает копию буфера на хосте."""
        if fence is not None:
            await fence
        await self._device.copy_to_staging(self.name, self._staging)
        with self.mapped() as view:
            return view.copy()


class ComputeDevice(ABC):
    """Общий каркас устройства: буферы, проверки владения, отправка стадий."""

    kind: DeviceKind

    def __init__(self, config: DeviceConfig | None = None, logger: Any | None = None) -> None:
        self.config = config or DeviceConfig()
        self.logger = logger
        self.n_points = 0
        self.n_dims = 0
        self.n_clusters = 0
        self.n_dispatches = 0
        self._buffers: Dict[BufferName, MappableBuffer] = {}
        self._pending: Fence | None = None
        self._is_open = False

    @property
    def is_open(self) -> bool:
        return self._is_open

    def open(self, X: np.ndarray, centroids: np.ndarray) -> None:
        """Размещает буферы для одного запуска."""
        if self._is_open:
            raise AcceleratorError(f"{self.kind.value} device is already in use by another run")

        X_c = np.ascontiguousarray(X, dtype=np.float64)
        C_c = np.ascontiguousarray(centroids, dtype=np.float64)
        self.n_points, self.n_dims = X_c.shape
        self.n_clusters = C_c.shape[0]
        self.n_dispatches = 0
        self._pending = None

        self._allocate(X_c, C_c)
        self._is_open = True

        N, D, K = self.n_points, self.n_dims, self.n_clusters
        self._buffers = {
            BufferName.CENTROIDS: MappableBuffer(
                self, BufferName.CENTROIDS, self._alloc_staging((K, D), np.float64)
            ),
            BufferName.ASSIGNMENTS: MappableBuffer(
                self, BufferName.ASSIGNMENTS, self._alloc_staging((N,), np.int32)
            ),
            BufferName.AGGREGATES: MappableBuffer(
                self, BufferName.AGGREGATES, self._alloc_staging((K, D + 1), np.float64)
            ),
        }
        if self.logger:
            self.logger.debug(f"  {self.kind.value} device: buffers allocated (N={N}, D={D}, K={K})")

    def close(self) -> None:
        """Освобождает буферы (безопасно вызывать повторно)."""
        if not self._is_open:
            return
        try:
            self._release()
        finally:
            self._is_open = False
            self._buffers = {}
            self._pending = None
            if self.logger:
                self.logger.debug(
                    f"  {self.kind.value} device: buffers released "
                    f"after {self.n_dispatches} dispatches"
                )

    def buffer(self, name: BufferName) -> MappableBuffer:
        self._ensure_open()
        return self._buffers[name]

    def write_centroids(self, centroids: np.ndarray) -> None:
        self._ensure_idle()
        self._write_centroids(np.ascontiguousarray(centroids, dtype=np.float64))

    def submit(self, stage: Stage) -> Fence:
        """Отправляет стадию на устройство; вызывается из корутины."""
        self._ensure_idle()
        fence = Fence(asyncio.get_running_loop(), label=stage.value)
        self.n_dispatches += 1
        self._pending = fence
        self._submit(stage, fence)
        return fence

    def _ensure_open(self) -> None:
        if not self._is_open:
            raise AcceleratorError(f"{self.kind.value} device has no allocated buffers")

    def _ensure_idle(self) -> None:
        self._ensure_open()
        mapped = [b.name.value for b in self._buffers.values() if b.is_mapped]
        if mapped:
            raise AcceleratorError(f"Buffers {mapped} are mapped for host access")
        if self._pending is not None and not self._pending.done():
            raise AcceleratorError(
                f"Dispatch '{self._pending.label}' has not reached its synchronization point"
            )

    def _alloc_staging(self, shape: Tuple[int, ...], dtype: Any) -> np.ndarray:
        return np.empty(shape, dtype=dtype)

    @abstractmethod
    def _allocate(self, X: np.ndarray, centroids: np.ndarray) -> None:
        raise NotImplementedError

    @abstractmethod
    def _release(self) -> None:
        raise NotImplementedError

    @abstractmethod
    def _write_centroids(self, centroids: np.ndarray) -> None:
        raise NotImplementedError

    @abstractmethod
    def _submit(self, stage: Stage, fence: Fence) -> None:
        raise NotImplementedError

    @abstractmethod
    def copy_to_staging(self, name: BufferName, staging: np.ndarray) -> Fence:
        """Копирует буфер устройства в staging; возвращает сигнал завершения."""
        raise NotImplementedError


# --- Глобальное состояние воркеров: shared буферы устройства ---
_DEVICE_BUFFERS: Dict[str, Any] = {}
_DEVICE_SHAPE: Tuple[int, int, int] | None = None


def _init_device_buffers(buffers: Dict[str, Any], shape: Tuple[int, int, int]) -> None:
    """Инициализатор пула: регистрирует shared буферы устройства."""
    global _DEVICE_SHAPE
    _DEVICE_BUFFERS.clear()
    _DEVICE_BUFFERS.update(buffers)
    _DEVICE_SHAPE = shape


def _buffer_view(buffers: Dict[str, Any], name: str, shape: Tuple[int, int, int]) -> np.ndarray:
    """NumPy-представление shared буфера (без копирования)."""
    N, D, K = shape
    raw = buffers[name]
    if hasattr(raw, "get_obj"):
        raw = raw.get_obj()
    if name == BufferName.ASSIGNMENTS.value:
        return np.frombuffer(raw, dtype=np.int32)
    arr = np.frombuffer(raw, dtype=np.float64)
    if name == BufferName.POINTS.value:
        return arr.reshape(N, D)
    if name == BufferName.CENTROIDS.value:
        return arr.reshape(K, D)
    return arr.reshape(K, D + 1)


def _dispatch_batch_worker(args: Tuple[str, int, int]) -> int:
    """Батч точек: метки и (для ACCUMULATE) вклад в агрегаты кластеров."""
    stage, start, stop = args
    assert _DEVICE_SHAPE is not None
    N, D, K = _DEVICE_SHAPE

    X = _buffer_view(_DEVICE_BUFFERS, BufferName.POINTS.value, _DEVICE_SHAPE)[start:stop]
    centroids = _buffer_view(_DEVICE_BUFFERS, BufferName.CENTROIDS.value, _DEVICE_SHAPE)
    labels = nearest_centroids(X, centroids)
    _buffer_view(_DEVICE_BUFFERS, BufferName.ASSIGNMENTS.value, _DEVICE_SHAPE)[start:stop] = labels

    if stage == Stage.ACCUMULATE.value:
        # Локальная редукция батча, затем атомарное добавление в общий буфер
        partial = np.zeros((K, D + 1), dtype=np.float64)
        for d in range(D):
            partial[:, d] = np.bincount(labels, weights=X[:, d], minlength=K)
        partial[:, D] = np.bincount(labels, minlength=K)

        shared = _DEVICE_BUFFERS[BufferName.AGGREGATES.value]
        with shared.get_lock():
            aggregates = _buffer_view(_DEVICE_BUFFERS, BufferName.AGGREGATES.value, _DEVICE_SHAPE)
            aggregates += partial

    return stop - start


def _resolve_worker() -> None:
    """centroids = sums / counts для непустых кластеров."""
    assert _DEVICE_SHAPE is not None
    D = _DEVICE_SHAPE[1]
    aggregates = _buffer_view(_DEVICE_BUFFERS, BufferName.AGGREGATES.value, _DEVICE_SHAPE)
    centroids = _buffer_view(_DEVICE_BUFFERS, BufferName.CENTROIDS.value, _DEVICE_SHAPE)
    counts = aggregates[:, D]
    non_empty = counts > 0
    centroids[non_empty] = aggregates[non_empty, :D] / counts[non_empty, None]


class HostDevice(ComputeDevice):
    """Устройство на пуле процессов с буферами в shared memory (пул один раз на open)."""

    kind = DeviceKind.HOST

    def __init__(self, config: DeviceConfig | None = None, logger: Any | None = None) -> None:
        super().__init__(config, logger)
        self._pool: Optional[Pool] = None
        self._shared: Dict[str, Any] = {}
        self._batches: List[Tuple[int, int]] = []

    @property
    def shape(self) -> Tuple[int, int, int]:
        return (self.n_points, self.n_dims, self.n_clusters)

    def _make_batches(self, N: int) -> List[Tuple[int, int]]:
        bs = int(self.config.batch_size)
        return [(i, min(i + bs, N)) for i in range(0, N, bs)]

    def _allocate(self, X: np.ndarray, centroids: np.ndarray) -> None:
        N, D = X.shape
        K = centroids.shape[0]
        n_procs = max(1, min(int(self.config.n_workers), cpu_count()))

        self._shared = {
            BufferName.POINTS.value: RawArray("d", int(X.size)),
            BufferName.CENTROIDS.value: RawArray("d", int(centroids.size)),
            BufferName.ASSIGNMENTS.value: RawArray("i", N),
            # lock=True: накопление из нескольких процессов одновременно
            BufferName.AGGREGATES.value: Array("d", K * (D + 1), lock=True),
        }
        shape = (N, D, K)
        _buffer_view(self._shared, BufferName.POINTS.value, shape)[:] = X
        _buffer_view(self._shared, BufferName.CENTROIDS.value, shape)[:] = centroids
        self._batches = self._make_batches(N)

        try:
            self._pool = Pool(
                processes=n_procs,
                initializer=_init_device_buffers,
                initargs=(self._shared, shape),
            )
        except OSError as exc:
            self._shared = {}
            raise AcceleratorError(f"Cannot start host device pool: {exc}") from exc

    def _release(self) -> None:
        if self._pool is not None:
            if self._pending is not None and not self._pending.done():
                self._pool.terminate()
            else:
                self._pool.close()
            self._pool.join()
        self._pool = None
        self._shared = {}
        self._batches = []

    def _write_centroids(self, centroids: np.ndarray) -> None:
        _buffer_view(self._shared, BufferName.CENTROIDS.value, self.shape)[:] = centroids

    def _submit(self, stage: Stage, fence: Fence) -> None:
        assert self._pool is not None
        if stage is Stage.RESOLVE:
            self._pool.apply_async(
                _resolve_worker, callback=fence.signal, error_callback=fence.fail
            )
            return

        if stage is Stage.ACCUMULATE:
            # Воркеры простаивают: очищаем агрегаты перед dispatch
            _buffer_view(self._shared, BufferName.AGGREGATES.value, self.shape)[:] = 0.0

        args = [(stage.value, start, stop) for start, stop in self._batches]
        self._pool.map_async(
            _dispatch_batch_worker, args, callback=fence.signal, error_callback=fence.fail
        )

    def copy_to_staging(self, name: BufferName, staging: np.ndarray) -> Fence:
        self._ensure_idle()
        np.copyto(staging, _buffer_view(self._shared, name.value, self.shape))
        return Fence.completed(label=f"readback:{name.value}")


def gpu_available() -> bool:
    """Проверка доступности CuPy/CUDA."""
    from colorcrunch.core.cuda import gpu_available as _cuda_available

    return _cuda_available()


def make_device(config: DeviceConfig | None = None, logger: Any | None = None) -> ComputeDevice:
    """
    Создаёт устройство по конфигурации.

    Raises:
        AcceleratorError: CUDA запрошена, но недоступна (без тихого
            перехода на хост).
    """
    config = config or DeviceConfig()
    if config.kind is DeviceKind.CUDA:
        from colorcrunch.core.cuda import CudaDevice

        return CudaDevice(config, logger=logger)
    return HostDevice(config, logger=logger)

