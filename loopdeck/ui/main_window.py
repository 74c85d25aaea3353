import logging
from PyQt6.QtWidgets import (QMainWindow, QWidget, QVBoxLayout, QGridLayout, QLabel,
                             QFileDialog, QScrollArea, QSlider, QMessageBox)
from PyQt6.QtCore import Qt, QTimer
from PyQt6.QtGui import QAction
import qtawesome as qta

from loopdeck.core.config import PlaybackState
from loopdeck.core.engine import Engine
from loopdeck.core.errors import DecodeFailure, StorageError
from loopdeck.io.decoder import decode_file, AUDIO_EXTENSIONS
from loopdeck.io.library import LibraryStore
from loopdeck.ui.track_card import TrackCard

logger = logging.getLogger("Loopdeck")

GRID_COLUMNS = 4


class MainWindow(QMainWindow):
    def __init__(self, library_root=None):
        super().__init__()

        self.setWindowTitle("Loopdeck - Soundboard")
        self.resize(780, 560)

        # Core Components
        self.library = self.open_library(library_root)
        saved_volume = self.library.master_volume if self.library is not None else None
        self.engine = Engine(master_volume=saved_volume)
        if self.library is not None:
            self.library.attach(self.engine)
        self.engine.on('state_changed', self.on_track_state_changed)
        self.engine.on('track_added', lambda track_id: self.refresh_grid())
        self.engine.on('track_removed', lambda track_id: self.refresh_grid())

        self.cards = {}

        # UI Setup
        self.create_toolbar()
        self.create_board()
        self.statusBar().showMessage("Ready")

        if not self.engine.start():
            QMessageBox.warning(self, "Audio", "Could not open the audio output device.")

        self.restore_library()

        # Scheduling pump
        self.timer = QTimer()
        self.timer.timeout.connect(self.engine.poll)
        self.timer.start(self.engine.config.poll_interval_ms)

    def open_library(self, root):
        try:
            return LibraryStore(root)
        except (OSError, StorageError) as e:
            logger.error(f"Library unavailable: {e}")
            QMessageBox.warning(self, "Library", f"Saved tracks could not be loaded:\n{e}")
            return None

    def create_toolbar(self):
        toolbar = self.addToolBar("Board")
        toolbar.setMovable(False)

        add_action = QAction(qta.icon("fa5s.plus", color="white"), "Add tracks", self)
        add_action.triggered.connect(self.open_files)
        toolbar.addAction(add_action)

        stop_action = QAction(qta.icon("fa5s.stop", color="white"), "Stop all", self)
        stop_action.triggered.connect(self.engine.stop_all)
        toolbar.addAction(stop_action)

        clear_action = QAction(qta.icon("fa5s.trash", color="white"), "Clear library", self)
        clear_action.triggered.connect(self.clear_all)
        toolbar.addAction(clear_action)

        toolbar.addSeparator()
        toolbar.addWidget(QLabel(" Master "))

        self.master_slider = QSlider(Qt.Orientation.Horizontal)
        self.master_slider.setRange(0, 100)
        self.master_slider.setFixedWidth(160)
        self.master_slider.setValue(round(self.engine.master_volume * 100))
        self.master_slider.valueChanged.connect(self.on_master_volume_changed)
        self.master_slider.sliderReleased.connect(self.on_master_volume_released)
        toolbar.addWidget(self.master_slider)

        self.master_label = QLabel(f" {self.master_slider.value()}%")
        self.master_label.setFixedWidth(48)
        toolbar.addWidget(self.master_label)

    def create_board(self):
        self.scroll_area = QScrollArea()
        self.scroll_area.setWidgetResizable(True)
        self.board = QWidget()
        self.grid = QGridLayout(self.board)
        self.grid.setSpacing(12)
        self.grid.setAlignment(Qt.AlignmentFlag.AlignTop | Qt.AlignmentFlag.AlignLeft)
        self.scroll_area.setWidget(self.board)

        container = QWidget()
        layout = QVBoxLayout(container)
        layout.addWidget(self.scroll_area)
        self.setCentralWidget(container)

        self.empty_label = QLabel("No tracks yet.\nUse \"Add tracks\" to load audio files.")
        self.empty_label.setAlignment(Qt.AlignmentFlag.AlignCenter)
        self.empty_label.setStyleSheet("color: #888; font-size: 14px;")

    def refresh_grid(self):
        # Clear layout
        while self.grid.count():
            item = self.grid.takeAt(0)
            widget = item.widget()
            if widget is not None and widget is not self.empty_label:
                widget.deleteLater()
        self.cards = {}

        tracks = self.engine.tracks
        if not tracks:
            self.grid.addWidget(self.empty_label, 0, 0)
            self.empty_label.show()
            return
        self.empty_label.hide()

        for i, track in enumerate(tracks):
            card = TrackCard(track, self.engine)
            self.cards[track.id] = card
            self.grid.addWidget(card, i // GRID_COLUMNS, i % GRID_COLUMNS)

    def restore_library(self):
        if self.library is None:
            self.refresh_grid()
            return
        restored = self.library.load_all(samplerate=self.engine.context.samplerate)
        for track_id, loaded in restored:
            try:
                self.engine.add_track(loaded, track_id=track_id)
            except ValueError as e:
                logger.error(f"Skipping saved track {track_id}: {e}")
        self.refresh_grid()
        if restored:
            self.statusBar().showMessage(f"Restored {len(restored)} track(s)", 3000)

    def open_files(self):
        patterns = " ".join(f"*{ext}" for ext in sorted(AUDIO_EXTENSIONS))
        paths, _ = QFileDialog.getOpenFileNames(self, "Add tracks", "", f"Audio Files ({patterns})")
        if paths:
            self.load_files(paths)

    def load_files(self, paths):
        """Decodes each file, adds it to the engine and saves it to the library."""
        for path in paths:
            try:
                loaded = decode_file(path, self.engine.context.samplerate)
            except DecodeFailure as e:
                logger.error(str(e))
                self.statusBar().showMessage(f"Could not load: {e.path}", 5000)
                continue

            track = self.engine.add_track(loaded)
            if self.library is None:
                continue
            try:
                self.library.save(track.id, track.buffer, track.metadata())
            except StorageError as e:
                logger.error(str(e))
                self.statusBar().showMessage(f"{track.name} loaded but not saved", 5000)

    def clear_all(self):
        reply = QMessageBox.question(
            self, "Clear library",
            "Delete ALL saved tracks? This cannot be undone.",
            QMessageBox.StandardButton.Yes | QMessageBox.StandardButton.No
        )
        if reply != QMessageBox.StandardButton.Yes:
            return
        self.engine.clear()
        if self.library is not None:
            try:
                self.library.clear()
            except StorageError as e:
                logger.error(str(e))
                self.statusBar().showMessage("Error while clearing the library", 5000)

    def on_track_state_changed(self, event):
        card = self.cards.get(event.track_id)
        if card is not None:
            card.set_active(event.state is not PlaybackState.IDLE)

    def on_master_volume_changed(self, value):
        # Saved once on release while dragging
        self.engine.set_master_volume(value / 100, notify=not self.master_slider.isSliderDown())
        self.master_label.setText(f" {value}%")

    def on_master_volume_released(self):
        self.engine.set_master_volume(self.master_slider.value() / 100)

    def closeEvent(self, event):
        if self.engine.active_tracks:
            reply = QMessageBox.question(
                self, "Quit",
                "Tracks are still playing. Quit anyway?",
                QMessageBox.StandardButton.Yes | QMessageBox.StandardButton.No
            )
            if reply != QMessageBox.StandardButton.Yes:
                event.ignore()
                return
        self.timer.stop()
        self.engine.close()
        event.accept()
