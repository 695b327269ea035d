"""Backchannel client exceptions for caller misuse."""


class BackchannelError(Exception):
    """Base exception for all backchannel client operations."""
    pass


class InvalidRequestError(BackchannelError, ValueError):
    """Request could not be built or sent as asked.

    Raised for blank relative paths, a missing request, a missing body model,
    or a request body attached to a method that does not carry one.
    """
    pass


class ErrorModelDecodeError(BackchannelError):
    """An error response body is not a valid error model document.

    Attributes:
        body: Raw response text that failed to decode
    """

    def __init__(self, message: str, body: str):
        self.body = body
        super().__init__(message)
