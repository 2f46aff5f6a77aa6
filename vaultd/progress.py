"""
Progress reporting for vaultd.

Tracks processed/total chunks of an indexing run with rate and ETA.
"""

import inspect
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Union


@dataclass
class ProgressEvent:
    """
    Event emitted after each embedding batch.

    Attributes:
        processed: Number of chunks handled so far (indexed or skipped)
        total: Total number of chunks in the run
        elapsed_seconds: Time elapsed since start
        eta_seconds: Estimated time remaining (None if unknown)
        chunks_per_second: Processing rate
    """
    processed: int
    total: int
    elapsed_seconds: float
    eta_seconds: Optional[float] = None
    chunks_per_second: float = 0.0

    @property
    def fraction(self) -> float:
        """Completed share of the run, 0.0 to 1.0."""
        if self.total <= 0:
            return 1.0
        return min(self.processed / self.total, 1.0)


ProgressCallback = Callable[[ProgressEvent], Union[None, Awaitable[None]]]


class ProgressReporter:
    """
    Tracks and reports indexing progress with ETA calculation.

    The callback may be a plain function or a coroutine function.
    """

    def __init__(
        self,
        total_chunks: int,
        callback: Optional[ProgressCallback] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize progress reporter.

        Args:
            total_chunks: Total number of chunks to process
            callback: Optional callback receiving ProgressEvents
            clock: Time source, injectable for tests
        """
        self.total_chunks = total_chunks
        self.processed = 0
        self.callback = callback
        self._clock = clock
        self.start_time = clock()

    async def update(self, processed: int) -> ProgressEvent:
        """
        Record the number of chunks processed so far and notify the callback.

        Args:
            processed: Cumulative processed chunk count

        Returns:
            ProgressEvent with current statistics
        """
        self.processed = processed
        elapsed = self._clock() - self.start_time

        chunks_per_second = processed / elapsed if elapsed > 0 else 0.0
        remaining = max(self.total_chunks - processed, 0)
        if remaining == 0:
            eta = 0.0
        else:
            eta = remaining / chunks_per_second if chunks_per_second > 0 else None

        event = ProgressEvent(
            processed=processed,
            total=self.total_chunks,
            elapsed_seconds=elapsed,
            eta_seconds=eta,
            chunks_per_second=chunks_per_second,
        )

        if self.callback:
            result = self.callback(event)
            if inspect.isawaitable(result):
                await result

        return event

    @staticmethod
    def format_eta(seconds: Optional[float]) -> str:
        """
        Format ETA in human-readable form.

        Args:
            seconds: Number of seconds (None if unknown)

        Returns:
            Formatted string like "2m 30s", "1h 15m", or "unknown"
        """
        if seconds is None:
            return "unknown"

        minutes, secs = divmod(int(seconds), 60)
        hours, minutes = divmod(minutes, 60)

        if hours > 0:
            return f"{hours}h {minutes}m"
        elif minutes > 0:
            return f"{minutes}m {secs}s"
        else:
            return f"{secs}s"

    @staticmethod
    def format_duration(seconds: float) -> str:
        """Format duration like "2.5s", "1m 30s" or "1h 15m"."""
        if seconds < 60:
            return f"{seconds:.1f}s"

        minutes, secs = divmod(int(seconds), 60)
        hours, minutes = divmod(minutes, 60)

        if hours > 0:
            return f"{hours}h {minutes}m"
        return f"{minutes}m {secs}s"

    def get_summary(self) -> str:
        elapsed = self._clock() - self.start_time
        rate = self.processed / elapsed if elapsed > 0 else 0
        return (
            f"Processed {self.processed}/{self.total_chunks} chunks "
            f"in {self.format_duration(elapsed)} "
            f"({rate:.1f} chunks/sec)"
        )
