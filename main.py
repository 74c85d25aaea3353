import argparse
import os
import sys
from PyQt6.QtWidgets import QApplication
import qdarktheme

from loopdeck.core.config import LIBRARY_CONFIG
from loopdeck.ui.main_window import MainWindow
from loopdeck.utils.logger import setup_logger


def main():
    parser = argparse.ArgumentParser(description="Loopdeck soundboard")
    parser.add_argument("--library", default=None, help="Track library directory")
    parser.add_argument("--debug", action="store_true")
    args = parser.parse_args()

    library_root = args.library or LIBRARY_CONFIG.root
    logger = setup_logger(debug=args.debug, log_dir=os.path.join(library_root, "logs"))
    logger.info("Loopdeck starting")

    app = QApplication(sys.argv[:1])

    # Apply modern dark theme
    app.setStyleSheet(qdarktheme.load_stylesheet(theme="dark"))

    window = MainWindow(library_root=library_root)
    window.show()

    sys.exit(app.exec())

if __name__ == "__main__":
    main()
