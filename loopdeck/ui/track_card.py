from PyQt6.QtWidgets import QFrame, QVBoxLayout, QHBoxLayout, QLabel, QSlider, QToolButton, QMenu
from PyQt6.QtCore import Qt, QSize
import qtawesome as qta

from loopdeck.core.errors import InvalidTrackReference

ICONS = {
    "rain": "fa5s.cloud-rain",
    "fire": "fa5s.fire",
    "wind": "fa5s.wind",
    "forest": "fa5s.tree",
    "water": "fa5s.tint",
    "thunder": "fa5s.bolt",
    "music": "fa5s.music",
    "battle": "fa5s.shield-alt",
    "tavern": "fa5s.beer",
    "cave": "fa5s.mountain",
}

IDLE_STYLE = """
    TrackCard {
        background-color: #2a2a2a;
        border: 1px solid #444;
        border-radius: 8px;
    }
    TrackCard:hover { background-color: #333; }
"""
ACTIVE_STYLE = """
    TrackCard {
        background-color: #1f3a3b;
        border: 2px solid #2cc7c9;
        border-radius: 8px;
    }
"""


class TrackCard(QFrame):
    """One soundboard button: click to toggle, slider for volume, menu for options."""

    def __init__(self, track, engine, parent=None):
        super().__init__(parent)
        self.track_id = track.id
        self.engine = engine
        self.setFixedSize(170, 150)
        self.setCursor(Qt.CursorShape.PointingHandCursor)
        self.init_ui(track)
        self.set_active(track.is_active)

    def init_ui(self, track):
        layout = QVBoxLayout(self)
        layout.setContentsMargins(10, 8, 10, 10)
        layout.setSpacing(6)

        # Icon + menu
        top_row = QHBoxLayout()
        self.icon_label = QLabel()
        self.icon_label.setPixmap(qta.icon(ICONS.get(track.icon, "fa5s.music"), color="#ddd").pixmap(QSize(32, 32)))
        top_row.addWidget(self.icon_label)
        top_row.addStretch()

        self.menu_button = QToolButton()
        self.menu_button.setIcon(qta.icon("fa5s.cog", color="#888"))
        self.menu_button.setIconSize(QSize(12, 12))
        self.menu_button.setPopupMode(QToolButton.ToolButtonPopupMode.InstantPopup)
        self.menu_button.setStyleSheet("QToolButton { border: none; background: transparent; } QToolButton::menu-indicator { image: none; }")
        self.menu_button.setMenu(self.build_menu(track))
        top_row.addWidget(self.menu_button)
        layout.addLayout(top_row)

        # Name
        self.name_label = QLabel(track.name)
        self.name_label.setStyleSheet("font-weight: bold; color: #ddd; font-size: 12px; background: transparent; border: none;")
        self.name_label.setWordWrap(True)
        self.name_label.setAlignment(Qt.AlignmentFlag.AlignCenter)
        layout.addWidget(self.name_label)

        # Volume
        self.volume_slider = QSlider(Qt.Orientation.Horizontal)
        self.volume_slider.setRange(0, 100)
        self.volume_slider.setValue(round(track.volume * 100))
        self.volume_slider.setToolTip("Volume")
        self.volume_slider.valueChanged.connect(self.on_volume_changed)
        self.volume_slider.sliderReleased.connect(self.on_volume_released)
        layout.addWidget(self.volume_slider)

    def build_menu(self, track):
        menu = QMenu(self)

        self.fade_action = menu.addAction(qta.icon("fa5s.water", color="white"), "Fade")
        self.fade_action.setCheckable(True)
        self.fade_action.setChecked(track.fade_enabled)
        self.fade_action.toggled.connect(lambda checked: self.engine.set_fade_enabled(self.track_id, checked))

        self.loop_action = menu.addAction(qta.icon("fa5s.redo", color="white"), "Loop")
        self.loop_action.setCheckable(True)
        self.loop_action.setChecked(track.loop_enabled)
        self.loop_action.toggled.connect(lambda checked: self.engine.set_loop_enabled(self.track_id, checked))

        menu.addSeparator()
        delete_action = menu.addAction(qta.icon("fa5s.trash", color="#f04f5a"), "Delete")
        delete_action.triggered.connect(self.on_delete)
        return menu

    def set_active(self, active):
        self.setStyleSheet(ACTIVE_STYLE if active else IDLE_STYLE)

    def on_volume_changed(self, value):
        self.engine.set_volume(self.track_id, value / 100, notify=not self.volume_slider.isSliderDown())

    def on_volume_released(self):
        self.engine.set_volume(self.track_id, self.volume_slider.value() / 100)

    def on_delete(self):
        try:
            self.engine.remove_track(self.track_id)
        except InvalidTrackReference:
            pass  # Already gone

    def mousePressEvent(self, event):
        if event.button() == Qt.MouseButton.LeftButton:
            self.engine.toggle(self.track_id)
        super().mousePressEvent(event)
