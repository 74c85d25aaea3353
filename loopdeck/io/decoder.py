"""
Decoder: turns audio files into engine-ready LoadedTrack values.
Uses librosa for robust file I/O and resampling to the engine rate.
"""
from __future__ import annotations
import logging
import os
from typing import Optional
import numpy as np

from ..core.config import ENGINE_CONFIG
from ..core.errors import DecodeFailure
from ..core.types import AudioBuffer, LoadedTrack, TrackMetadata
from .naming import display_name, icon_for_name, should_fade_by_default

logger = logging.getLogger("Loopdeck")

AUDIO_EXTENSIONS = frozenset({
    ".wav", ".flac", ".ogg", ".oga", ".mp3", ".m4a", ".aac", ".aiff", ".aif", ".opus", ".wma",
})


def is_audio_file(path: str) -> bool:
    """Check the extension against the formats the decoder accepts."""
    return os.path.splitext(path)[1].lower() in AUDIO_EXTENSIONS


def decode_file(
    path: str,
    samplerate: int = ENGINE_CONFIG.samplerate,
    metadata: Optional[TrackMetadata] = None
) -> LoadedTrack:
    """
    Decode an audio file into a LoadedTrack.

    Args:
        path: File to decode
        samplerate: Target rate; librosa resamples when the file differs
        metadata: Settings to attach; derived from the file name if omitted

    Raises:
        DecodeFailure: if the file cannot be read or holds no audio
    """
    logger.info("Decoding file: %s", path)
    try:
        import librosa

        data, sr = librosa.load(path, sr=samplerate, mono=False)
    except Exception as e:
        raise DecodeFailure(path, str(e)) from e

    # Convert to (frames, channels)
    if data.ndim > 1:
        data = data.T
    data = np.ascontiguousarray(data, dtype=np.float32)
    if data.shape[0] == 0:
        raise DecodeFailure(path, "no audio frames")

    if metadata is None:
        metadata = TrackMetadata(
            name=display_name(path),
            icon=icon_for_name(path),
            fade_enabled=should_fade_by_default(path),
        )
    buffer = AudioBuffer(data, int(sr))
    logger.debug("Decoded %s: %r", path, buffer)
    return LoadedTrack(buffer=buffer, metadata=metadata)
