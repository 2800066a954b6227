"""Provide a timer as a contextmanager, optionally logging the elapsed time on exit."""

import logging
import time


class Timer:
    """Measure wall-clock time of a block.

    If a logger and a label are supplied, the elapsed time is written
    at DEBUG level when the block exits.
    """

    def __init__(self, label: str | None = None, logger: logging.Logger | None = None):
        self.label = label
        self.logger = logger
        self.elapsed_time = 0.0

    def __enter__(self):
        """Start a new timer as a context manager."""
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, *exc_info):
        """Stop the timer."""
        self.elapsed_time = time.perf_counter() - self.start_time
        if self.logger is not None and self.label is not None:
            self.logger.debug("%s took %f seconds", self.label, self.elapsed_time)
