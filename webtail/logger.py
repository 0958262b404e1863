import os, logging, time
from datetime import datetime
from logging.handlers import TimedRotatingFileHandler
import coloredlogs
import pytz

ROOT = "webtail"
CONSOLE_FMT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
FILE_FMT = "%(asctime)s [%(levelname)s] %(name)s %(funcName)s:%(lineno)d | %(message)s"

class SamplingFilter(logging.Filter):
    """Let records tagged with ``sample_key`` through once per window."""

    def __init__(self, window: float = 300):
        super().__init__()
        self.window = window
        self._last = {}

    def filter(self, record):
        key = getattr(record, "sample_key", None)
        if not key:
            return True
        now = time.time()
        last = self._last.get(key)
        if last is None or now - last > self.window:
            self._last[key] = now
            return True
        return False

def _use_timezone(name: str):
    tz = pytz.timezone(name)
    logging.Formatter.converter = lambda *args: datetime.now(tz).timetuple()

def setup_logging(level: str = "INFO", file_path: str | None = None,
                  backup_count: int = 14, timezone: str = "UTC") -> logging.Logger:
    logger = logging.getLogger(ROOT)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    _use_timezone(timezone)
    coloredlogs.install(level=level, logger=logger, fmt=CONSOLE_FMT)
    if file_path:
        os.makedirs(os.path.dirname(os.path.abspath(file_path)), exist_ok=True)
        file_handler = TimedRotatingFileHandler(file_path, when="midnight",
                                                backupCount=backup_count, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(FILE_FMT))
        file_handler.addFilter(SamplingFilter())
        logger.addHandler(file_handler)
    return logger

def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"{ROOT}.{name}")
