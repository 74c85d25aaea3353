"""
Filename heuristics: display name, icon tag and default fade setting.
"""
import os

# Keyword -> icon tag (qtawesome names are resolved by the UI)
SOUND_ICONS = {
    "rain": "rain",
    "fire": "fire",
    "wind": "wind",
    "forest": "forest",
    "water": "water",
    "thunder": "thunder",
    "music": "music",
    "battle": "battle",
    "tavern": "tavern",
    "cave": "cave",
}
DEFAULT_ICON = "music-note"

# Short percussive hits sound wrong with a fade
NO_FADE_KEYWORDS = (
    "hit", "strike", "knock", "bell", "horn", "drum",
    "clap", "snap", "crack", "boom", "bang", "crash",
)


def display_name(filename):
    """File name without directory or extension."""
    base = os.path.basename(filename)
    stem, _ = os.path.splitext(base)
    return stem or base


def icon_for_name(filename):
    """Icon tag for the first keyword found in the file name."""
    lower = os.path.basename(filename).lower()
    for keyword, icon in SOUND_ICONS.items():
        if keyword in lower:
            return icon
    return DEFAULT_ICON


def should_fade_by_default(filename):
    """Ambient material fades by default; percussive one-shots do not."""
    lower = os.path.basename(filename).lower()
    return not any(keyword in lower for keyword in NO_FADE_KEYWORDS)
