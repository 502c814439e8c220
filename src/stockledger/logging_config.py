from __future__ import annotations

import json
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "time": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


# Loggers that also get a file of their own, next to app.log and errors.log.
DEDICATED_LOGS = {
    "stockledger.ledger": "ledger.log",
    "stockledger.alerts": "alerts.log",
}


def _json_file_handler(path: Path, level: int) -> RotatingFileHandler:
    fh = RotatingFileHandler(path, maxBytes=2_000_000, backupCount=5, encoding="utf-8")
    fh.setFormatter(JsonFormatter(datefmt="%Y-%m-%d %H:%M:%S"))
    fh.setLevel(level)
    return fh


def setup_logging(logs_dir: Path, level: int = logging.INFO) -> None:
    logs_dir.mkdir(parents=True, exist_ok=True)

    root = logging.getLogger()
    root.setLevel(level)
    if root.handlers:
        return

    root.addHandler(_json_file_handler(logs_dir / "app.log", logging.INFO))
    root.addHandler(_json_file_handler(logs_dir / "errors.log", logging.ERROR))

    for name, filename in DEDICATED_LOGS.items():
        logger = logging.getLogger(name)
        logger.addHandler(_json_file_handler(logs_dir / filename, logging.INFO))
        logger.setLevel(logging.INFO)
