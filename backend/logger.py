import logging
import sys

from backend.config import LOG_LEVEL


# Configure logging
def setup_logger(name: str = "issue_tracker_ai") -> logging.Logger:
    """Set up application logger with consistent formatting."""
    logger = logging.getLogger(name)

    # Only add handlers if none exist (avoid duplicate handlers)
    if not logger.handlers:
        level = logging.getLevelName(LOG_LEVEL.upper())
        if not isinstance(level, int):
            level = logging.INFO
        logger.setLevel(level)

        # Console handler with formatting
        handler = logging.StreamHandler(sys.stdout)
        handler.setLevel(level)

        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    return logger

# Create default logger
logger = setup_logger()

