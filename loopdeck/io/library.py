"""
Track library: durable storage for decoded tracks and their settings.

Layout under the library root:
    library.json      index: per-track metadata, save time, master volume
    audio/<id>.wav    decoded audio, written with soundfile
"""
from __future__ import annotations
import json
import logging
import os
import shutil
import time
from typing import TYPE_CHECKING, Any, Optional
import numpy as np
import soundfile as sf

from ..core.config import LIBRARY_CONFIG, LibraryConfig
from ..core.errors import StorageError
from ..core.types import AudioBuffer, LoadedTrack, TrackMetadata, TrackSettingsEvent

if TYPE_CHECKING:
    from ..core.engine import Engine

logger = logging.getLogger("Loopdeck")

INDEX_VERSION = 1


class LibraryStore:
    """
    Persists tracks across sessions.

    The engine never does I/O itself; `attach()` subscribes the store to the
    engine's change notifications so settings, deletions and the master
    volume are written as they happen.
    """

    def __init__(self, root: Optional[str] = None, config: LibraryConfig = LIBRARY_CONFIG) -> None:
        """
        Args:
            root: Library directory (created if missing)
            config: Library configuration

        Raises:
            StorageError: if an existing index cannot be parsed
        """
        self.config = config
        self.root = root or config.root
        self.index_path = os.path.join(self.root, config.index_file)
        self.audio_dir = os.path.join(self.root, config.audio_dir)
        os.makedirs(self.audio_dir, exist_ok=True)
        self._index = self._load_index()

    # --- Index ---

    def _load_index(self) -> dict[str, Any]:
        if not os.path.exists(self.index_path):
            return {"version": INDEX_VERSION, "master_volume": None, "tracks": {}}
        try:
            with open(self.index_path, "r", encoding="utf-8") as f:
                index = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise StorageError(f"Cannot read library index {self.index_path}: {e}") from e
        if not isinstance(index, dict) or not isinstance(index.get("tracks"), dict):
            raise StorageError(f"Library index {self.index_path} is malformed")
        index.setdefault("master_volume", None)
        return index

    def _write_index(self) -> None:
        tmp_path = self.index_path + ".tmp"
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(self._index, f, indent=2)
            os.replace(tmp_path, self.index_path)
        except OSError as e:
            raise StorageError(f"Cannot write library index: {e}") from e

    def _audio_path(self, track_id: str) -> str:
        return os.path.join(self.audio_dir, f"{track_id}.{self.config.audio_format.lower()}")

    @property
    def track_ids(self) -> list[str]:
        """Stored ids, oldest first."""
        entries = self._index["tracks"]
        return sorted(entries, key=lambda tid: entries[tid].get("saved_at", 0.0))

    def __contains__(self, track_id: object) -> bool:
        return track_id in self._index["tracks"]

    def __len__(self) -> int:
        return len(self._index["tracks"])

    # --- Tracks ---

    def save(self, track_id: str, buffer: AudioBuffer, metadata: TrackMetadata) -> None:
        """
        Store a track's audio and settings.

        Raises:
            StorageError: if the audio or index cannot be written
        """
        path = self._audio_path(track_id)
        try:
            sf.write(path, buffer.data, buffer.samplerate,
                     format=self.config.audio_format, subtype=self.config.audio_subtype)
        except Exception as e:
            raise StorageError(f"Cannot write audio for {metadata.name}: {e}") from e
        self._index["tracks"][track_id] = {
            "file": os.path.basename(path),
            "metadata": metadata.to_dict(),
            "saved_at": time.time(),
        }
        self._write_index()
        logger.info("Saved %s to library", metadata.name)

    def update_metadata(self, track_id: str, metadata: TrackMetadata) -> bool:
        """Replace the stored settings of a track. Returns False if unknown."""
        entry = self._index["tracks"].get(track_id)
        if entry is None:
            logger.warning("Cannot update settings of unsaved track %s", track_id)
            return False
        entry["metadata"] = metadata.to_dict()
        self._write_index()
        return True

    def load(self, track_id: str, samplerate: Optional[int] = None) -> LoadedTrack:
        """
        Read a stored track back.

        Args:
            track_id: Stored id
            samplerate: Resample to this rate if the stored audio differs

        Raises:
            StorageError: if the track is unknown or its audio unreadable
        """
        entry = self._index["tracks"].get(track_id)
        if entry is None:
            raise StorageError(f"Track {track_id} is not in the library")
        path = os.path.join(self.audio_dir, entry.get("file", ""))
        try:
            data, sr = sf.read(path, dtype="float32", always_2d=False)
        except Exception as e:
            raise StorageError(f"Cannot read audio for track {track_id}: {e}") from e

        if samplerate is not None and sr != samplerate:
            import librosa

            logger.info("Resampling stored track %s from %d to %d Hz", track_id, sr, samplerate)
            resampled = librosa.resample(np.ascontiguousarray(data.T), orig_sr=sr, target_sr=samplerate)
            data, sr = resampled.T, samplerate

        metadata = TrackMetadata.from_dict(entry.get("metadata", {}))
        return LoadedTrack(buffer=AudioBuffer(np.ascontiguousarray(data, dtype=np.float32), int(sr)), metadata=metadata)

    def load_all(self, samplerate: Optional[int] = None) -> list[tuple[str, LoadedTrack]]:
        """Load every stored track, oldest first. Unreadable ones are skipped."""
        loaded = []
        for track_id in self.track_ids:
            try:
                loaded.append((track_id, self.load(track_id, samplerate)))
            except StorageError as e:
                logger.error("Skipping library entry: %s", e)
        return loaded

    def delete(self, track_id: str) -> bool:
        """Remove a track's audio and settings. Returns False if unknown."""
        entry = self._index["tracks"].pop(track_id, None)
        if entry is None:
            return False
        path = os.path.join(self.audio_dir, entry.get("file", ""))
        try:
            os.remove(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning("Could not delete %s: %s", path, e)
        self._write_index()
        logger.info("Deleted track %s from library", track_id)
        return True

    def clear(self) -> None:
        """Delete every stored track. The master volume is kept."""
        shutil.rmtree(self.audio_dir, ignore_errors=True)
        os.makedirs(self.audio_dir, exist_ok=True)
        self._index["tracks"] = {}
        self._write_index()
        logger.info("Library cleared")

    # --- Settings ---

    @property
    def master_volume(self) -> Optional[float]:
        return self._index.get("master_volume")

    @master_volume.setter
    def master_volume(self, volume: float) -> None:
        self._index["master_volume"] = float(volume)
        self._write_index()

    # --- Engine wiring ---

    def attach(self, engine: "Engine") -> None:
        """Persist the engine's change notifications from now on."""
        engine.on('settings_changed', self._on_settings_changed)
        engine.on('track_removed', self.delete)
        engine.on('master_volume_changed', self._on_master_volume_changed)

    def detach(self, engine: "Engine") -> None:
        engine.off('settings_changed', self._on_settings_changed)
        engine.off('track_removed', self.delete)
        engine.off('master_volume_changed', self._on_master_volume_changed)

    def _on_settings_changed(self, event: TrackSettingsEvent) -> None:
        self.update_metadata(event.track_id, event.metadata)

    def _on_master_volume_changed(self, volume: float) -> None:
        self.master_volume = volume
