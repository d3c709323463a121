"""
Service-level error taxonomy.

Services raise these; ``conduit.main`` renders them as JSON error responses
using ``status_code``. An unresolvable feed filter is not an
error: the feed degrades to an empty page instead.
"""


class ConduitError(Exception):
    status_code: int = 500

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


class NotFoundError(ConduitError):
    """A referenced article, user or comment does not exist."""

    status_code = 404


class UnauthorizedError(ConduitError):
    """A mutation was attempted by someone other than the owner."""

    status_code = 401


class InvalidInputError(ConduitError):
    """The request is well-formed but semantically invalid (e.g. self-follow)."""

    status_code = 400
