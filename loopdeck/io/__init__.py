"""
Loopdeck I/O Module

Collaborators at the engine boundary:
- decoder: Audio files -> LoadedTrack
- library: Durable track storage
- naming: Filename heuristics
"""
from .decoder import decode_file, is_audio_file
from .library import LibraryStore
from .naming import display_name, icon_for_name, should_fade_by_default

__all__ = [
    'decode_file',
    'is_audio_file',
    'LibraryStore',
    'display_name',
    'icon_for_name',
    'should_fade_by_default',
]
