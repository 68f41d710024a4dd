import logging
import logging.handlers
import sys
from pathlib import Path

NOISY_LOGGERS = ("urllib3", "werkzeug", "youtube_transcript_api")

CONSOLE_FORMAT = "%(levelname)s: %(message)s"
# Several workers can share one log file; the pid tells them apart
FILE_FORMAT = "%(asctime)s [%(process)d] %(levelname)s %(name)s: %(message)s"


def setup_logging(log_file: str = None, level: str = "INFO",
                  max_bytes: int = 5_000_000, backup_count: int = 3) -> logging.Logger:
    """Configure the kidsafe logger once per process.

    Later calls only change the level, so the CLI group and the web
    command can both call this without stacking handlers.
    """
    logger = logging.getLogger("kidsafe")
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    if logger.handlers:
        return logger

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(logging.Formatter(CONSOLE_FORMAT))
    logger.addHandler(console)

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        rotating = logging.handlers.RotatingFileHandler(
            log_file, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
        )
        rotating.setFormatter(logging.Formatter(FILE_FORMAT))
        logger.addHandler(rotating)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return logger
