class RetryableTaskError(Exception):
    """Task failed but should be retried (transient failure)."""

class TerminalTaskError(Exception):
    """Task failed and should not be retried (bad input, invariant broken)."""

class ValidationError(ValueError):
    """Request rejected before any write (bad quantity, empty identifiers...)."""

class NotFoundError(LookupError):
    """Unknown task, or task whose chunks have no location yet."""

class UpstreamError(RetryableTaskError):
    """A call to the store, queue, S3, IoT or SSM failed."""
