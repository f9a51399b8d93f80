"""
Audio conversion between the telephony wire format and the engine's.

Telephony audio is 8 kHz G.711 µ-law (one byte per sample). The engine takes
16 kHz and returns 24 kHz signed 16-bit little-endian PCM. Rate conversion is
deliberately naive: upsampling duplicates samples and downsampling keeps every
third one, so no stage buffers more than the frame it is given.

All functions are pure and allocate a single output array, so they are safe to
call concurrently from any number of sessions.
"""

from typing import Sequence, Union

import numpy as np

from voice_gateway.models.call_models import (
    ENGINE_INPUT_ENCODING,
    TELEPHONY_ENCODING,
    AudioFrame,
)

MULAW_BIAS = 0x84
MULAW_CLIP = 32635

PCM_DTYPE = np.dtype("<i2")

# Segment (exponent) for a biased magnitude, indexed by magnitude >> 7
_EXPONENT_TABLE = np.array([max(v.bit_length() - 1, 0) for v in range(256)], dtype=np.int32)

Samples = Union[np.ndarray, Sequence[int]]


def decode_mulaw(data: bytes) -> np.ndarray:
    """
    Expand µ-law bytes to 16-bit linear samples.

    Args:
        data: Companded audio, one byte per sample

    Returns:
        np.ndarray: int16 samples; empty if the input is not a byte string
    """
    if not isinstance(data, (bytes, bytearray, memoryview)) or len(data) == 0:
        return np.zeros(0, dtype=PCM_DTYPE)

    inverted = ~np.frombuffer(data, dtype=np.uint8)
    sign = inverted & 0x80
    exponent = ((inverted >> 4) & 0x07).astype(np.int32)
    mantissa = (inverted & 0x0F).astype(np.int32)

    magnitude = ((mantissa << 3) + MULAW_BIAS) << exponent
    samples = np.where(sign != 0, MULAW_BIAS - magnitude, magnitude - MULAW_BIAS)
    return samples.astype(PCM_DTYPE)


def encode_mulaw(samples: Samples) -> bytes:
    """
    Compand 16-bit linear samples to µ-law bytes.

    Magnitudes are clipped to 32635 before the bias is added so loud samples
    saturate instead of wrapping around.
    """
    pcm = np.asarray(samples, dtype=np.int32)
    if pcm.size == 0:
        return b""

    sign = np.where(pcm < 0, 0x80, 0x00)
    magnitude = np.minimum(np.abs(pcm), MULAW_CLIP) + MULAW_BIAS
    exponent = _EXPONENT_TABLE[(magnitude >> 7) & 0xFF]
    mantissa = (magnitude >> (exponent + 3)) & 0x0F

    companded = ~(sign | (exponent << 4) | mantissa) & 0xFF
    return companded.astype(np.uint8).tobytes()


def upsample_linear(samples: Samples) -> np.ndarray:
    """Double the sample rate by repeating every sample once."""
    pcm = np.asarray(samples, dtype=PCM_DTYPE)
    return np.repeat(pcm, 2)


def downsample_decimate(samples: Samples) -> np.ndarray:
    """Divide the sample rate by three, keeping the first of every three samples."""
    pcm = np.asarray(samples, dtype=PCM_DTYPE)
    return pcm[::3].copy()


def pcm_from_bytes(data: bytes) -> np.ndarray:
    """Interpret little-endian 16-bit PCM; odd-length input yields no samples."""
    if not isinstance(data, (bytes, bytearray, memoryview)) or len(data) % 2:
        return np.zeros(0, dtype=PCM_DTYPE)
    return np.frombuffer(data, dtype=PCM_DTYPE).copy()


def pcm_to_bytes(samples: Samples) -> bytes:
    return np.asarray(samples, dtype=PCM_DTYPE).tobytes()


def telephony_to_engine(frame: AudioFrame) -> AudioFrame:
    """Caller audio (8 kHz µ-law) to engine input (16 kHz PCM)."""
    pcm16k = upsample_linear(decode_mulaw(frame.payload))
    return AudioFrame(payload=pcm_to_bytes(pcm16k), encoding=ENGINE_INPUT_ENCODING, timestamp=frame.timestamp)


def engine_to_telephony(frame: AudioFrame) -> AudioFrame:
    """Engine speech (24 kHz PCM) to caller audio (8 kHz µ-law)."""
    pcm8k = downsample_decimate(pcm_from_bytes(frame.payload))
    return AudioFrame(payload=encode_mulaw(pcm8k), encoding=TELEPHONY_ENCODING, timestamp=frame.timestamp)


__all__ = [
    "decode_mulaw",
    "encode_mulaw",
    "upsample_linear",
    "downsample_decimate",
    "pcm_from_bytes",
    "pcm_to_bytes",
    "telephony_to_engine",
    "engine_to_telephony",
]
