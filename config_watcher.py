"""Reload settings when the settings file changes on disk."""

from pathlib import Path

from PySide6.QtCore import QFileSystemWatcher, QObject, QTimer, Signal, Slot

from config import _config_path, load_config
from logging_config import get_logger

logger = get_logger(__name__)

# Editors save in bursts; reload once the file has been quiet this long
RELOAD_DELAY_MS = 100


class ConfigWatcher(QObject):
    """Emits ``config_changed`` with freshly loaded settings after each edit.

    The settings directory is watched as well as the file: saving through a
    temp file and rename replaces the inode, which silently drops the file
    from the watch list, and a file created after startup has nothing to
    watch yet.
    """

    config_changed = Signal(object)  # settings dict

    def __init__(self, path: Path | None = None, parent=None):
        super().__init__(parent)
        self.path = Path(path or _config_path())
        self._stamp = self._file_stamp()

        self._watcher = QFileSystemWatcher(self)
        self._watcher.fileChanged.connect(self._on_changed)
        self._watcher.directoryChanged.connect(self._on_changed)

        self._reload_timer = QTimer(self)
        self._reload_timer.setSingleShot(True)
        self._reload_timer.timeout.connect(self._check)
        self._watch()

    def _file_stamp(self) -> tuple[int, int] | None:
        try:
            st = self.path.stat()
        except OSError:
            return None
        return st.st_mtime_ns, st.st_size

    def _watch(self):
        if self.path.exists() and str(self.path) not in self._watcher.files():
            self._watcher.addPath(str(self.path))
        parent = self.path.parent
        if parent.is_dir() and str(parent) not in self._watcher.directories():
            self._watcher.addPath(str(parent))

    @Slot(str)
    def _on_changed(self, _path: str):
        self._reload_timer.start(RELOAD_DELAY_MS)

    @Slot()
    def _check(self):
        self._watch()
        stamp = self._file_stamp()
        if stamp == self._stamp:
            # Another file in the settings directory changed
            return
        self._stamp = stamp
        self.reload()

    def reload(self) -> dict:
        """Load the settings now and announce them."""
        settings = load_config(self.path)
        logger.info(f"Settings reloaded from {self.path}")
        self.config_changed.emit(settings)
        return settings
