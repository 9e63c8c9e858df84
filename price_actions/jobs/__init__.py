"""Jobs module for the Price Actions engine."""

from .watchlist_job import (
    CancellationToken,
    Job,
    WatchlistJobManager,
    WatchlistJobParameters,
)

__all__ = [
    "CancellationToken",
    "Job",
    "WatchlistJobManager",
    "WatchlistJobParameters",
]
