# errors.py — Typed portal errors
# Each error carries the HTTP status and a stable code the presentation layer
# switches on (draft vs archived vs read-only render different screens).
from typing import Optional


class PortalError(Exception):
    status_code = 400
    code = "portal_error"
    default_message = "Request could not be completed"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class NotFoundError(PortalError):
    status_code = 404
    code = "not_found"
    default_message = "Not found"


class NotReadyError(PortalError):
    status_code = 403
    code = "not_ready"
    default_message = "This portal is not ready yet. Contact your team for more information."


class ArchivedError(PortalError):
    status_code = 410
    code = "archived"
    default_message = "This project is archived and no longer available."


class UnauthorizedError(PortalError):
    # Deliberately vague: never reveal whether an email is a member
    status_code = 403
    code = "unauthorized"
    default_message = "Not authorized"


class ReadOnlyViolation(PortalError):
    status_code = 409
    code = "read_only"
    default_message = "This project is completed and can no longer be edited."


class StoreFailure(PortalError):
    status_code = 500
    code = "store_failure"
    default_message = "Something went wrong. Please try again."


class InvalidCredentials(PortalError):
    status_code = 401
    code = "invalid_credentials"
    default_message = "Incorrect password"
