"""Failure classes seen by the gateway. A payment decline is not one of them."""


class ValidationError(ValueError):
    """The client sent a request the gateway refuses before calling anything."""


class DownstreamError(Exception):
    """A call to another service failed."""

    def __init__(self, message, service=None):
        super().__init__(message)
        self.service = service


class TransientUnavailable(DownstreamError):
    """Service unavailable or deadline exceeded. Safe to retry."""


class PermanentError(DownstreamError):
    """Any other failed call. Never retried."""


class InvalidArgument(PermanentError):
    """The downstream service rejected the request arguments."""


class NotFound(DownstreamError):
    """The downstream service has no such record."""
