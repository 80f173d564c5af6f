from .base import KMeansBase
from .config import DeviceConfig, DeviceKind, Initializer, KMeansAlgorithm, KMeansConfig
from .device import ComputeDevice, HostDevice, gpu_available, make_device
from .errors import AcceleratorError, KMeansConfigError, KMeansError
from .hamerly import KMeansHamerly
from .initializer import initialize_centroids
from .kmeans import KMeans, KMeansResult
from .lloyd import KMeansLloyd
from .parallel import KMeansParallel

__all__ = [
    "KMeansBase",
    "KMeansLloyd",
    "KMeansHamerly",
    "KMeansParallel",
    "KMeans",
    "KMeansResult",
    "KMeansConfig",
    "KMeansAlgorithm",
    "Initializer",
    "DeviceConfig",
    "DeviceKind",
    "ComputeDevice",
    "HostDevice",
    "gpu_available",
    "make_device",
    "initialize_centroids",
    "KMeansError",
    "KMeansConfigError",
    "AcceleratorError",
]
