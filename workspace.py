"""Working-directory resolution for new sessions."""

from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

from logging_config import get_logger

logger = get_logger(__name__)


@dataclass
class ResolvedDirectory:
    """Where a session starts and which workspace root it came from."""

    path: Path
    folder_index: int | None = None  # only set when several roots exist


class WorkspaceResolver:
    """Picks the working directory for a new session."""

    def __init__(self, folders: Sequence[Path] | None = None):
        self.folders: list[Path] = list(folders or [])

    def set_folders(self, folders: Sequence[Path]):
        self.folders = list(folders)

    def needs_choice(self) -> bool:
        """Several roots: the user should pick one before a session starts."""
        return len(self.folders) > 1

    def default_directory(self) -> Path:
        """First workspace root, or the home directory when it is missing on disk."""
        candidate = self.folders[0] if self.folders else Path.home()
        return candidate if candidate.exists() else Path.home()

    def resolve(self, cwd: Path | str | None = None, folder_index: int | None = None) -> ResolvedDirectory:
        """Resolve an explicit path, or the chosen root when several exist."""
        if cwd is not None:
            path = Path(cwd).expanduser()
            if not path.exists():
                logger.warning(f"Requested directory {path} does not exist, using home")
                path = Path.home()
            return ResolvedDirectory(path, self._index_of(path))

        if not self.needs_choice():
            return ResolvedDirectory(self.default_directory())

        if folder_index is None or not 0 <= folder_index < len(self.folders):
            # Dismissed without a choice, fall back to the first root
            folder_index = 0
        path = self.folders[folder_index]
        if not path.exists():
            logger.warning(f"Workspace folder {path} does not exist, using home")
            path = Path.home()
        return ResolvedDirectory(path, folder_index)

    def _index_of(self, path: Path) -> int | None:
        if not self.needs_choice():
            return None
        for i, folder in enumerate(self.folders):
            try:
                path.resolve().relative_to(folder.resolve())
                return i
            except ValueError:
                continue
        return None
