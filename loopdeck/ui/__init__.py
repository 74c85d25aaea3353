"""
Loopdeck UI Module

Qt-based soundboard host:
- MainWindow: Track grid, master volume, library management
- TrackCard: Individual track button with volume and options
"""
from .main_window import MainWindow
from .track_card import TrackCard

__all__ = [
    'MainWindow',
    'TrackCard',
]
