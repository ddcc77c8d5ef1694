"""
Progress reporting and message formatting.

Reporters only observe the pipeline: they receive (current, total)
counters and never feed anything back.
"""

from typing import Optional
import logging

import click
from tqdm import tqdm


logger = logging.getLogger(__name__)


_LEVEL_STYLES = {
    "info": {},
    "success": {"fg": "green", "bold": True},
    "warning": {"fg": "yellow"},
    "error": {"fg": "red"},
}


def format_message(message: str, level: str = "info") -> str:
    """Return ``message`` styled for the given level."""
    try:
        style = _LEVEL_STYLES[level]
    except KeyError:
        raise ValueError(f"Unknown message level: {level}")
    return click.style(message, **style) if style else message


class ProgressReporter:
    """Base reporter; ignores every update."""

    def report(self, current: int, total: Optional[int]) -> None:
        pass

    def close(self) -> None:
        pass

    def __enter__(self) -> "ProgressReporter":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class TqdmProgress(ProgressReporter):
    """
    Render progress with a tqdm bar.

    The bar adopts the most recent total and never moves backwards, so a
    wrong container estimate only affects the displayed percentage.
    """

    def __init__(self, desc: str = "Processing", disable: bool = False, leave: bool = False):
        self.desc = desc
        self.disable = disable
        self.leave = leave
        self._bar: Optional[tqdm] = None
        self._position = 0

    def report(self, current: int, total: Optional[int]) -> None:
        if self._bar is None:
            self._bar = tqdm(total=total, desc=self.desc, disable=self.disable, leave=self.leave)
        elif total != self._bar.total:
            self._bar.total = total
            self._bar.refresh()
        if current > self._position:
            self._bar.update(current - self._position)
            self._position = current

    def close(self) -> None:
        if self._bar is not None:
            self._bar.close()
            self._bar = None
            self._position = 0


class LoggingProgress(ProgressReporter):
    """Log progress every ``step`` percent; useful when stderr is not a terminal."""

    def __init__(self, desc: str = "Processing", step: int = 10):
        self.desc = desc
        self.step = step
        self._last_percent = -step

    def report(self, current: int, total: Optional[int]) -> None:
        if not total:
            return
        percent = min(100, int(100 * current / total))
        if percent >= self._last_percent + self.step or (percent == 100 and self._last_percent < 100):
            self._last_percent = percent
            logger.info(f"{self.desc}: {percent}% ({current}/{total})")
