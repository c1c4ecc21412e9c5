import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class LazyErrorFileHandler(logging.Handler):
    """Error log file that is only created once the first error is emitted."""

    def __init__(self, log_dir: Path, level: int = logging.ERROR):
        super().__init__(level)
        self.log_dir = log_dir
        self.file_handler = None
        self.timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")

    def emit(self, record):
        if self.file_handler is None:
            self.log_dir.mkdir(parents=True, exist_ok=True)
            error_log_file = self.log_dir / f"clubhub_errors_{self.timestamp}.log"
            self.file_handler = logging.FileHandler(error_log_file, encoding="utf-8")
            self.file_handler.setLevel(self.level)
            self.file_handler.setFormatter(self.formatter)

        self.file_handler.emit(record)

    def close(self):
        if self.file_handler:
            self.file_handler.close()
        super().close()


def setup_logging(level: str = "INFO", log_dir: Optional[str] = None) -> None:
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    if root_logger.handlers:
        root_logger.handlers.clear()

    formatter = logging.Formatter(_LOG_FORMAT, datefmt=_DATE_FORMAT)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_dir:
        error_handler = LazyErrorFileHandler(Path(log_dir))
        error_handler.setFormatter(formatter)
        root_logger.addHandler(error_handler)
