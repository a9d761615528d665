"""Error kinds raised by the services and mapped to HTTP responses in main."""

from typing import Optional


class PortalError(Exception):
    """Base class for every classified service error."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class InvalidRequestError(PortalError):
    """Malformed or contradictory client input."""


class FieldValidationError(PortalError):
    """A required field is missing or empty."""

    def __init__(self, field: str, message: str = "is required"):
        self.field = field
        super().__init__(f"validation error: {field} - {message}")


class AuthenticationError(PortalError):
    """No verified caller identity."""


class AuthorizationError(PortalError):
    """Caller has no team or lacks permission."""


class ConfigurationError(PortalError):
    """Team has no upstream credentials configured."""


class NotFoundError(PortalError):
    def __init__(self, entity: str, message: Optional[str] = None):
        self.entity = entity
        super().__init__(message or f"{entity} not found")


class AICoreAPIError(PortalError):
    """Upstream AI Core call returned an unexpected status."""

    def __init__(self, status_code: int, body: str, message: Optional[str] = None):
        self.status_code = status_code
        self.body = body
        super().__init__(message or f"AI Core API request failed with status {status_code}: {body}")


class UpstreamTransportError(PortalError):
    """Upstream AI Core could not be reached or the exchange broke off."""


class SonarError(PortalError):
    """Sonar is not configured or one of its calls failed."""


USER_EMAIL_NOT_FOUND = "user email not found in context"
USER_NOT_IN_DB = "user not found in database"
USER_NOT_ASSIGNED_TO_TEAM = "user is not assigned to any team"
TEAM_NOT_IN_DB = "team not found in database"


def wrap(operation: str, error: PortalError) -> PortalError:
    """Prefix an error message with the failing operation while keeping its kind."""
    error.message = f"{operation}: {error.message}"
    error.args = (error.message,)
    return error
