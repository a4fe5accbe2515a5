"""Per-run scratch directories."""
import logging
import shutil
import tempfile
import uuid
from pathlib import Path
from typing import List, Optional

logger = logging.getLogger(__name__)


class ScratchWorkspace:
    """
    Scratch directory owned by exactly one pipeline run.

    Every file the run writes is created through `new_path` or registered with
    `track`, and `cleanup` removes all of them plus the directory itself.
    `cleanup` may be called any number of times.
    """

    def __init__(self, directory: Path, run_id: str):
        self.directory = directory
        self.run_id = run_id
        self._tracked: List[Path] = []
        self._cleaned = False

    @property
    def tracked_files(self) -> List[Path]:
        return list(self._tracked)

    @property
    def is_cleaned(self) -> bool:
        return self._cleaned

    def track(self, path: str | Path) -> Path:
        """Register a file for deletion at cleanup."""
        if self._cleaned:
            raise RuntimeError(f"Workspace {self.directory} has already been cleaned up")
        path = Path(path)
        if path not in self._tracked:
            self._tracked.append(path)
        return path

    def release(self, path: str | Path) -> None:
        """Stop tracking a file that has been moved out of the workspace."""
        path = Path(path)
        if path in self._tracked:
            self._tracked.remove(path)

    def new_path(self, prefix: str, suffix: str = "") -> Path:
        """Return a unique, tracked file path inside the workspace."""
        return self.track(self.directory / f"{prefix}-{uuid.uuid4().hex}{suffix}")

    def cleanup(self) -> None:
        """Delete all tracked files and the workspace directory."""
        if self._cleaned:
            return

        for path in self._tracked:
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                logger.warning(f"Could not delete {path}: {e}")
        self._tracked.clear()

        if self.directory.exists():
            # Untracked leftovers (e.g. a half-written ffmpeg output) go too
            shutil.rmtree(self.directory, ignore_errors=True)
        if self.directory.exists():
            logger.warning(f"Workspace directory still present after cleanup: {self.directory}")

        self._cleaned = True
        logger.debug(f"Cleaned up workspace {self.directory}")

    def __enter__(self) -> "ScratchWorkspace":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.cleanup()
        return False

    def __repr__(self):
        return f"ScratchWorkspace({self.directory}, files={len(self._tracked)})"


class ResourceManager:
    """Creates uniquely named scratch workspaces under a root directory."""

    def __init__(self, root: Optional[str | Path] = None):
        self.root = Path(root) if root else Path(tempfile.gettempdir()) / "reelmaker"

    def open(self) -> ScratchWorkspace:
        """Create a fresh workspace for one run."""
        run_id = uuid.uuid4().hex
        directory = self.root / f"run-{run_id}"
        directory.mkdir(parents=True, exist_ok=False)
        logger.debug(f"Opened workspace {directory}")
        return ScratchWorkspace(directory, run_id)
