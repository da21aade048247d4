"""
Type definitions for the stretchcore core module.
Provides type aliases and protocols for type safety and better IDE support.
"""
from typing import Callable, Protocol
import numpy as np
from numpy.typing import NDArray

# Audio data types
InterleavedArray = NDArray[np.float32]  # Shape: (frames * channels,)
FrameArray = NDArray[np.float32]        # Shape: (frames, channels)
ChunkArray = NDArray[np.float32]        # Shape: (chunks, chunk_size, channels)
SpectrumArray = NDArray[np.complex128]  # Shape: (chunks, chunk_size, channels)

# Callback types
ProgressCallback = Callable[[float], None]  # fraction in [0, 1]
StepCallback = Callable[[int, int], None]   # (done, total)


class SpectralBackend(Protocol):
    """
    FFT kernels used by the phase vocoder.

    Both methods operate along axis 0 of a ``(chunk_size, channels)`` block.
    An accelerator may provide its own implementation with the same contract.
    """
    def forward(self, frames: FrameArray) -> NDArray[np.complex128]: ...

    def inverse(self, spectra: NDArray[np.complex128]) -> FrameArray: ...
