"""
CUDA/CuPy устройство параллельного движка.

- dispatch_points: один поток на точку; ближайший центроид → assignments,
  для ACCUMULATE - atomicAdd сумм каналов и счётчика в aggregates;
- resolve_centroids: один поток на кластер; деление сумм на счётчик прямо
  на устройстве (пустые кластеры не трогаются).

Все операции идут в non-blocking stream; чтение на хост - асинхронная
копия в pinned-память, завершение сигнализируется через
Stream.launch_host_func. Без CuPy/CUDA устройство не создаётся.
"""

from __future__ import annotations

import asyncio
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Tuple

try:  # CuPy опционален: без GPU доступен только HostDevice
    import cupy as cp
    import cupyx

    _GPU_OK = True
except Exception:  # noqa: BLE001
    cp = None  # type: ignore
    cupyx = None  # type: ignore
    _GPU_OK = False

import numpy as np

from colorcrunch.core.config import DeviceConfig, DeviceKind
from colorcrunch.core.device import BufferName, ComputeDevice, Fence, Stage
from colorcrunch.core.errors import AcceleratorError


def gpu_available() -> bool:
    """Проверка доступности CuPy/CUDA (импорт и хотя бы одно устройство)."""
    if not _GPU_OK:
        return False
    try:
        return cp.cuda.runtime.getDeviceCount() > 0
    except Exception:  # noqa: BLE001
        return False


_DISPATCH_KERNEL = r"""
extern "C" __global__
void dispatch_points(const double* __restrict__ X,
                     const double* __restrict__ C,
                     int* __restrict__ labels,
                     double* __restrict__ aggregates,
                     const int N, const int D, const int K,
                     const int accumulate) {
    int i = blockDim.x * blockIdx.x + threadIdx.x;
    if (i >= N) return;

    const double* x = X + (size_t)i * (size_t)D;

    double best = 0.0;
    int best_k = 0;
    for (int k = 0; k < K; ++k) {
        const double* c = C + (size_t)k * (size_t)D;
        double dist = 0.0;
        for (int d = 0; d < D; ++d) {
            double diff = x[d] - c[d];
            dist += diff * diff;
        }
        // строгое сравнение: при равенстве выигрывает меньший индекс
        if (k == 0 || dist < best) { best = dist; best_k = k; }
    }
    labels[i] = best_k;

    if (!accumulate) return;

    // Слот кластера: D сумм + счётчик; пишут одновременно многие потоки
    double* slot = aggregates + (size_t)best_k * (size_t)(D + 1);
    for (int d = 0; d < D; ++d) {
        atomicAdd(&slot[d], x[d]);
    }
    atomicAdd(&slot[D], 1.0);
}
"""

_RESOLVE_KERNEL = r"""
extern "C" __global__
void resolve_centroids(const double* __restrict__ aggregates,
                       double* __restrict__ C,
                       const int D, const int K) {
    int k = blockDim.x * blockIdx.x + threadIdx.x;
    if (k >= K) return;

    const double* slot = aggregates + (size_t)k * (size_t)(D + 1);
    double count = slot[D];
    if (count <= 0.0) return;

    for (int d = 0; d < D; ++d) {
        C[(size_t)k * (size_t)D + (size_t)d] = slot[d] / count;
    }
}
"""


@contextmanager
def _cuda_errors(action: str) -> Iterator[None]:
    """Переводит ошибки CUDA в AcceleratorError."""
    try:
        yield
    except (cp.cuda.runtime.CUDARuntimeError, cp.cuda.driver.CUDADriverError) as exc:
        raise AcceleratorError(f"CUDA {action} failed: {exc}") from exc


class CudaDevice(ComputeDevice):
    """Устройство на CuPy: raw CUDA kernels + асинхронный stream."""

    kind = DeviceKind.CUDA

    def __init__(self, config: DeviceConfig | None = None, logger: Any | None = None) -> None:
        if not gpu_available():
            raise AcceleratorError("CuPy/CUDA недоступен, CUDA-устройство выключено")
        super().__init__(config, logger)

        with _cuda_errors("context acquisition"):
            # Non-blocking stream: не синхронизируется с default stream
            self._stream = cp.cuda.Stream(non_blocking=True)
            self._dispatch = cp.RawKernel(_DISPATCH_KERNEL, "dispatch_points")
            self._resolve = cp.RawKernel(_RESOLVE_KERNEL, "resolve_centroids")

        batch = int(self.config.batch_size)
        self._threads = batch if batch <= 1024 else 256
        self._arrays: Dict[BufferName, "cp.ndarray"] = {}

    def _alloc_staging(self, shape: Tuple[int, ...], dtype: Any) -> np.ndarray:
        # pinned-память нужна для настоящей асинхронной копии D2H
        return cupyx.empty_pinned(shape, dtype=dtype)

    def _allocate(self, X: np.ndarray, centroids: np.ndarray) -> None:
        N, D = X.shape
        K = centroids.shape[0]
        with _cuda_errors("buffer allocation"), self._stream:
            self._arrays = {
                BufferName.POINTS: cp.asarray(X, dtype=cp.float64, order="C"),
                BufferName.CENTROIDS: cp.asarray(centroids, dtype=cp.float64, order="C"),
                BufferName.ASSIGNMENTS: cp.zeros(N, dtype=cp.int32),
                BufferName.AGGREGATES: cp.zeros((K, D + 1), dtype=cp.float64),
            }

    def _release(self) -> None:
        with _cuda_errors("stream synchronization"):
            self._stream.synchronize()
        self._arrays = {}

    def _write_centroids(self, centroids: np.ndarray) -> None:
        with _cuda_errors("centroid upload"):
            self._arrays[BufferName.CENTROIDS].set(centroids, stream=self._stream)

    def _blocks(self, n: int) -> int:
        return (n + self._threads - 1) // self._threads

    def _submit(self, stage: Stage, fence: Fence) -> None:
        N, D, K = self.n_points, self.n_dims, self.n_clusters
        arrays = self._arrays
        with _cuda_errors(f"dispatch '{stage.value}'"), self._stream:
            if stage is Stage.RESOLVE:
                self._resolve(
                    (self._blocks(K),),
                    (self._threads,),
                    (
                        arrays[BufferName.AGGREGATES],
                        arrays[BufferName.CENTROIDS],
                        np.int32(D),
                        np.int32(K),
                    ),
                )
            else:
                accumulate = stage is Stage.ACCUMULATE
                if accumulate:
                    arrays[BufferName.AGGREGATES].fill(0)
                self._dispatch(
                    (self._blocks(N),),
                    (self._threads,),
                    (
                        arrays[BufferName.POINTS],
                        arrays[BufferName.CENTROIDS],
                        arrays[BufferName.ASSIGNMENTS],
                        arrays[BufferName.AGGREGATES],
                        np.int32(N),
                        np.int32(D),
                        np.int32(K),
                        np.int32(1 if accumulate else 0),
                    ),
                )
            self._stream.launch_host_func(fence.signal, None)

    def copy_to_staging(self, name: BufferName, staging: np.ndarray) -> Fence:
        self._ensure_idle()
        fence = Fence(asyncio.get_running_loop(), label=f"readback:{name.value}")
        src = self._arrays[name]
        with _cuda_errors(f"readback '{name.value}'"):
            # pinned staging + blocking=False: копия ставится в очередь stream
            src.get(stream=self._stream, out=staging, blocking=False)
            self._stream.launch_host_func(fence.signal, None)
        return fence
