"""Error taxonomy shared by the graph cache, models and store adapter."""

from __future__ import annotations


class OGMError(Exception):
    """Base class for every error raised by neogm."""


class NotFoundError(OGMError, LookupError):
    """A requested cache entry or node does not exist."""


class InvalidStateError(OGMError):
    """The operation is not valid for the entity's lifecycle state."""


class InvalidArgumentError(OGMError, ValueError):
    """Malformed filter, option or entity passed by the caller."""


class StoreError(OGMError):
    """Failure surfaced by the Neo4j driver while running a statement.

    ``code`` carries the server status code (e.g.
    ``Neo.ClientError.Schema.ConstraintValidationFailed``) when the driver
    provides one.
    """

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code

    def __str__(self) -> str:
        if self.code:
            return f"{self.message} ({self.code})"
        return self.message
