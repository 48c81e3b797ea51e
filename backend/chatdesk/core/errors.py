"""Domain errors raised by the store and the subscription services.

Routers translate these into HTTP responses; messages here are safe to
show to an admin but never contain driver or provider internals.
"""


class StoreUnavailable(Exception):
    """The project store could not be reached (connection error or timeout).

    Retryable. Raised before any LLM call or charge has happened.
    """


class ProjectNotFound(Exception):
    """No project with the given external id."""

    def __init__(self, project_id: str) -> None:
        super().__init__(f"Project '{project_id}' not found")
        self.project_id = project_id


class AlreadyExpired(Exception):
    """Reactivation was attempted after the subscription expiry date."""


class InvalidTransition(Exception):
    """The requested status change is not allowed from the current state."""


class InvalidRequest(ValueError):
    """An admin or widget argument is out of range (months, limit, rating)."""
