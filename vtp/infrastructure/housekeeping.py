import logging
import os
from pathlib import Path
from typing import Iterable, List, Optional, Tuple
from vtp.domain.errors import CleanupWarning


class HousekeepingService:
    """Service for removing per-invocation scratch artifacts.

    Nothing here raises: every failure is returned as a CleanupWarning and
    logged at WARNING level.
    """

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def remove_files(self, paths: Iterable[Path]) -> Tuple[List[Path], List[CleanupWarning]]:
        """Attempts to unlink each path once. Returns (removed, warnings)."""
        removed: List[Path] = []
        warnings: List[CleanupWarning] = []
        seen = set()
        for path in paths:
            if path is None or path in seen:
                continue
            seen.add(path)
            warning = self._remove_file(path)
            if warning is None:
                removed.append(path)
            else:
                warnings.append(warning)
        return removed, warnings

    def _remove_file(self, path: Path) -> Optional[CleanupWarning]:
        try:
            if path.exists():
                path.unlink()
            return None
        except OSError as e:
            warning = CleanupWarning(f"Failed to cleanup file {path}: {e}", path)
            self.logger.warning(str(warning))
            return warning

    def remove_scratch_dir(self, directory: Optional[Path]) -> Optional[CleanupWarning]:
        """Removes an invocation scratch directory, including leftover .tmp files.

        Any other file still present means a path escaped allocation; the
        directory is then left behind and reported.
        """
        if directory is None or not directory.exists():
            return None
        try:
            for root, dirs, files in os.walk(directory, topdown=False):
                for file in files:
                    if file.endswith(".tmp"):
                        (Path(root) / file).unlink()
                for name in dirs:
                    (Path(root) / name).rmdir()
            directory.rmdir()
            return None
        except OSError as e:
            warning = CleanupWarning(f"Failed to remove scratch directory {directory}: {e}", directory)
            self.logger.warning(str(warning))
            return warning
