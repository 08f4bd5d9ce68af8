import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

def setup_logging(log_dir: Path, debug: bool = False, log_path: Optional[Path] = None) -> logging.Logger:
    """
    Setup logging configuration for videoconverter.

    Creates log directory and a per-run video-converter-<timestamp>.log file.
    Returns configured logger instance.

    Args:
        log_dir: Directory where run logs are written
        debug: If True, enable DEBUG level logging and echo records to the console
        log_path: Optional path to log file (overrides log_dir)
    """
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)

    if log_path:
        log_file = Path(log_path)
    else:
        stamp = datetime.now(timezone.utc).strftime("%Y-%m-%d-%H-%M-%S")
        log_file = log_dir / f"video-converter-{stamp}.log"
    log_file.parent.mkdir(parents=True, exist_ok=True)

    level = logging.DEBUG if debug else logging.INFO

    handlers = [logging.FileHandler(log_file)]
    if debug:
        handlers.append(logging.StreamHandler())

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(levelname)s - %(message)s',
        handlers=handlers,
        force=True  # Override any existing configuration
    )

    logger = logging.getLogger(__name__)
    logger.info(f"Logging initialized: {log_file} (debug={'ON' if debug else 'OFF'})")

    return logger
