"""Centralized path configuration for the harness.

Single source of truth for the repository root, the k6 scripts shipped next
to the harness and the default results directory.
"""

from datetime import datetime
from pathlib import Path


class ProjectPaths:
    """Project directory structure paths."""

    def __init__(self, base_path: Path | None = None):
        """Initialize project paths.

        Args:
            base_path: Optional base path for the project root.
                      If None, auto-detects from this file's location.
        """
        if base_path is None:
            # Auto-detect: go up from src/common/paths.py to repository root
            self.root = Path(__file__).parent.parent.parent
        else:
            self.root = base_path

        self.load_scripts = self.root / "loadtests"
        self.results = self.root / "results"

    def run_dir(self, results_dir: Path | None = None, now: datetime | None = None) -> Path:
        """Return the timestamped directory for one benchmark run.

        The directory is created if missing.
        """
        base = results_dir or self.results
        stamp = (now or datetime.now()).strftime("%Y%m%d-%H%M%S")
        run_dir = base / stamp
        run_dir.mkdir(parents=True, exist_ok=True)
        return run_dir


# Global singleton instance
paths = ProjectPaths()
