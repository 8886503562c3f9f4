"""
Voice-note waveform envelope.

The web client renders a voice-note preview from a fixed 64-value amplitude
envelope (values 0-100). Browsers without a working Web Audio stack cannot
compute it, so it is derived here from mono float32 PCM.
"""

from __future__ import annotations

import numpy as np
from numpy.typing import NDArray

from .constants import WAVEFORM_SAMPLES

_FLOAT32_LE = np.dtype("<f4")


def compute_waveform(pcm: bytes, *, samples: int = WAVEFORM_SAMPLES) -> bytes:
    """
    Return the envelope of raw little-endian float32 mono PCM.

    A trailing partial sample is ignored. No samples at all yields an
    all-zero envelope.
    """

    count = len(pcm) // _FLOAT32_LE.itemsize
    if count == 0:
        return bytes(samples)
    data = np.frombuffer(pcm, dtype=_FLOAT32_LE, count=count)
    return waveform_from_samples(data, samples=samples)


def waveform_from_samples(data: NDArray[np.floating], *, samples: int = WAVEFORM_SAMPLES) -> bytes:
    """
    Split `data` into `samples` equal blocks, average the absolute amplitude of
    each block and scale against the loudest block with floor rounding.

    When there are fewer samples than blocks each sample is its own block and
    the remaining blocks are silent.
    """

    mags = np.abs(np.nan_to_num(np.asarray(data, dtype=np.float64)))
    count = int(mags.size)
    means = np.zeros(samples, dtype=np.float64)
    if count == 0:
        return bytes(samples)

    block = max(count // samples, 1)
    if count >= samples:
        means[:] = mags[: block * samples].reshape(samples, block).mean(axis=1)
    else:
        means[:count] = mags

    peak = float(means.max())
    if peak <= 0.0:
        return bytes(samples)

    multiplier = 1.0 / peak
    scaled = np.floor(100.0 * (means * multiplier))
    return np.clip(scaled, 0, 100).astype(np.uint8).tobytes()
