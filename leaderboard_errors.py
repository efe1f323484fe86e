#!/usr/bin/env python3


class LeaderboardError(Exception):
    """Base error for the leaderboard service."""


class FetchError(LeaderboardError):
    """A record store could not return its documents."""


class ComputeError(LeaderboardError):
    kind = "compute_error"


class AlreadyInProgress(ComputeError):
    kind = "already_in_progress"

    def __init__(self, message: str = "leaderboard computation already in progress"):
        super().__init__(message)


class SourceFetchFailed(ComputeError):
    kind = "source_fetch_failed"

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(f"Failed to load leaderboard: {detail}")
