import logging
import sys
from pathlib import Path
from typing import List, Optional


def setup_logging(debug: bool = False, log_path: Optional[Path] = None, rich_console: bool = False) -> logging.Logger:
    """
    Setup logging configuration for VTP.

    Function runtimes collect stderr, so a stream handler is always installed.
    The CLI swaps it for a rich handler. Returns configured logger instance.

    Args:
        debug: If True, enable DEBUG level logging with detailed timings
        log_path: Optional path to an additional log file
        rich_console: Render console records with rich (interactive CLI use)
    """
    level = logging.DEBUG if debug else logging.INFO

    handlers: List[logging.Handler] = []
    if rich_console:
        from rich.logging import RichHandler
        handlers.append(RichHandler(show_path=False, rich_tracebacks=debug))
    else:
        handlers.append(logging.StreamHandler(sys.stderr))

    if log_path:
        log_file = Path(log_path)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(levelname)s - %(message)s',
        handlers=handlers,
        force=True  # Override any existing configuration
    )

    logger = logging.getLogger(__name__)
    target = log_path if log_path else "stderr"
    logger.info(f"Logging initialized: {target} (debug={'ON' if debug else 'OFF'})")

    return logger
