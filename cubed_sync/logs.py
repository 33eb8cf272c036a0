"""Root logger setup: rotating log file plus a quiet stderr handler."""

from __future__ import annotations

import json
import logging
import os
import time
from logging.handlers import RotatingFileHandler

from .config import Config


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        data = {
            "ts": int(time.time() * 1000),
            "level": record.levelname,
            "msg": record.getMessage(),
            "name": record.name,
        }
        if record.exc_info:
            data["exc"] = self.formatException(record.exc_info)
        return json.dumps(data, sort_keys=True)


def setup_logging(config: Config, verbose: bool = False) -> None:
    d = os.path.dirname(config.log_file)
    if d:
        os.makedirs(d, exist_ok=True)
    if config.log_json:
        fmt: logging.Formatter = JsonFormatter()
    else:
        fmt = logging.Formatter('%(asctime)s - %(levelname)s - %(name)s - %(message)s')
    root = logging.getLogger()
    root.setLevel(getattr(logging, config.log_level.upper(), logging.INFO))
    fh = RotatingFileHandler(config.log_file, maxBytes=2 * 1024 * 1024, backupCount=2, encoding="utf-8")
    fh.setFormatter(fmt)
    # Status lines reach the terminal through Console; stderr only carries problems.
    sh = logging.StreamHandler()
    sh.setFormatter(fmt)
    sh.setLevel(logging.DEBUG if verbose else logging.WARNING)
    root.handlers = []
    root.addHandler(fh)
    root.addHandler(sh)
    # urllib3 logs every retry at WARNING; keep those in the file only.
    logging.getLogger("urllib3").setLevel(logging.ERROR if not verbose else logging.DEBUG)
