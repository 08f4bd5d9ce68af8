import logging
import shutil
from pathlib import Path

logger = logging.getLogger(__name__)


class HousekeepingService:
    """Service for preparing and removing the run's temp directory."""

    def prepare_temp_dir(self, directory: Path) -> Path:
        """Creates the temp directory and removes leftovers of an interrupted run."""
        directory = Path(directory)
        directory.mkdir(parents=True, exist_ok=True)
        for entry in directory.iterdir():
            try:
                if entry.is_dir():
                    shutil.rmtree(entry)
                else:
                    entry.unlink()
            except OSError as e:
                logger.warning(f"Cannot remove stale temp entry {entry}: {e}")
        return directory

    def remove_temp_dir(self, directory: Path):
        directory = Path(directory)
        if not directory.exists():
            return
        try:
            shutil.rmtree(directory)
        except OSError as e:
            logger.warning(f"Cannot remove temp directory {directory}: {e}")
