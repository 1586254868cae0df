# logger_utils.py - logging setup and timing metrics

import logging
import os
import time
from typing import Optional

from rich.logging import RichHandler

# Directory where log files go when file logging is requested
LOG_DIR = "logs"

# Path to the default log file, can be overriden
DEFAULT_LOG_PATH = os.path.join(LOG_DIR, "assistant.log")

ROOT_LOGGER = "ollama_assistant"


def configure_logging(level: str = "INFO", log_path: Optional[str] = None, use_color: bool = True) -> logging.Logger:
    """
    Install console (Rich) and optional file handlers on the package logger.
    Safe to call more than once, handlers are replaced rather than stacked.
    """
    log = logging.getLogger(ROOT_LOGGER)
    log.setLevel(getattr(logging, str(level).upper(), logging.INFO))
    for h in list(log.handlers):
        log.removeHandler(h)
        h.close()

    console = RichHandler(rich_tracebacks=True, show_path=False, markup=False)
    if not use_color:
        console.console.no_color = True
    log.addHandler(console)

    if log_path:
        os.makedirs(os.path.dirname(log_path) or ".", exist_ok=True)
        fh = logging.FileHandler(log_path, encoding="utf-8")
        # Each entry is written as: [YYYY-MM-DD HH:MM:SS] LEVEL   | logger | message
        fh.setFormatter(logging.Formatter("[%(asctime)s] %(levelname)-7s | %(name)s | %(message)s",
                                          datefmt="%Y-%m-%d %H:%M:%S"))
        log.addHandler(fh)

    log.propagate = False
    return log


class Log:
    """Metric helpers on top of the package logger."""

    @staticmethod
    def metric(tag, value, unit=""):
        """
        Record a metric (timing, counts) at debug level.
        Example: model.complete done: 123.4ms
        """
        logging.getLogger(f"{ROOT_LOGGER}.metrics").debug("%s: %s%s", tag, value, unit)

    @staticmethod
    def time_block(label):
        """
        Helper for measuring execution time of a code block.
        To use:
            with Log.time_block("context.build") as t:
                do_some_work()
            t.elapsed_ms
        It automatically logs how long the block took.
        """
        return _Timer(label)


class _Timer:
    """Context manager used internally to measure time for a code block."""
    def __init__(self, label):
        self.label = label
        self.start = time.perf_counter()
        self.elapsed_ms = 0.0

    def __enter__(self):
        self.start = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc, tb):
        """When exiting the 'with' block, calculate how long it took and record it as a metric."""
        self.elapsed_ms = round((time.perf_counter() - self.start) * 1000.0, 3)
        Log.metric(f"{self.label} done", self.elapsed_ms, "ms")
        return False
