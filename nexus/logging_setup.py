import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path


def _build_file_handler(log_path: Path) -> RotatingFileHandler:
    formatter = logging.Formatter("[%(asctime)s] [%(name)s] %(levelname)s %(message)s")
    file_handler = RotatingFileHandler(log_path, maxBytes=2_000_000, backupCount=3, encoding="utf-8")
    file_handler.setFormatter(formatter)
    file_handler.setLevel(logging.DEBUG)
    file_handler.name = "nexus_file"
    return file_handler


def _build_stream_handler() -> logging.StreamHandler:
    formatter = logging.Formatter("[%(name)s] %(message)s")
    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)
    stream_handler.setLevel(logging.WARNING)
    stream_handler.name = "nexus_stream"
    return stream_handler


def configure_logging(logs_dir: Path, level: str = "INFO") -> Path:
    logs_dir.mkdir(parents=True, exist_ok=True)
    log_path = logs_dir / "nexus.log"

    logger = logging.getLogger("nexus")
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    for handler in logger.handlers:
        handler.close()
    logger.handlers = [_build_file_handler(log_path), _build_stream_handler()]
    logger.propagate = False

    logger.debug("Logging initialized: %s", log_path)
    return log_path
