class ScoringWorkerError(Exception):
    """The background scoring worker failed, crashed, or sent a malformed reply."""


class ScoringTimeoutError(ScoringWorkerError):
    """The background scoring worker did not answer before the deadline."""

    def __init__(self, timeout: float):
        super().__init__(f"Scoring worker did not respond within {timeout:.1f}s")
        self.timeout = timeout
