"""One-line status messages for the terminal.

Every message is mirrored into the log file so a run can be reconstructed
from the log alone.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from rich.console import Console as RichConsole
from rich.text import Text

logger = logging.getLogger(__name__)


class Console:
    def __init__(self, console: Optional[RichConsole] = None):
        self._console = console or RichConsole(highlight=False, soft_wrap=True)

    def _emit(self, mark: str, style: str, msg: str, left: str = "[", right: str = "]") -> None:
        self._console.print(Text.assemble((left, "grey50"), (mark, style), (right, "grey50"), " ", msg))

    def success(self, msg: str) -> None:
        self._emit("✓", "bright_green", msg)
        logger.info(msg)

    def error(self, msg: str) -> None:
        self._emit("x", "bright_red", msg)
        logger.error(msg)

    def info(self, msg: str) -> None:
        self._emit("*", "bright_yellow", msg)
        logger.info(msg)

    def log(self, msg: str) -> None:
        self._emit(datetime.now().strftime("%H:%M:%S"), "blue", msg, left="[ ", right=" ]")
        logger.info(msg)
