"""Error surface exposed to the HTTP layer."""

from __future__ import annotations


class StreamingError(Exception):
    """Base for errors surfaced upward; status_code is the HTTP mapping."""

    status_code = 500

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__


class NotFound(StreamingError):
    status_code = 404


class NotReady(StreamingError):
    status_code = 400


class AlreadyInProgress(StreamingError):
    status_code = 409


class ProbeFailed(StreamingError):
    status_code = 500


class AllEncodesFailed(StreamingError):
    status_code = 500


class InvalidProgress(StreamingError):
    status_code = 400


class UnknownQuality(StreamingError):
    status_code = 400
