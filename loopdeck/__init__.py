"""
Loopdeck - a soundboard of gaplessly looping, fading audio tracks.
"""
__version__ = "1.0.0"
