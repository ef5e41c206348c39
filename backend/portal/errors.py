"""
Failure taxonomy for the access-control and review core.

Every failure is per-operation and recoverable by retry or user action;
routes translate these into HTTP responses.
"""
from __future__ import annotations


class PortalError(Exception):
    """Base for all portal failures."""

    code = "portal_error"

    def __init__(self, message: str = "", *, cause: BaseException | None = None):
        super().__init__(message or self.code)
        self.cause = cause


class NoUser(PortalError):
    code = "no_user"


class MissingRole(PortalError):
    code = "missing_role"


class ReadError(PortalError):
    code = "read_error"


class InsertError(PortalError):
    code = "insert_error"


class PersistError(PortalError):
    code = "persist_error"


class NotifyError(PortalError):
    code = "notify_error"


class SubscriptionError(PortalError):
    code = "subscription_error"


class NotInWorkingSet(PortalError):
    code = "not_in_working_set"


class DecisionInProgress(PortalError):
    code = "decision_in_progress"


class AuthError(PortalError):
    code = "auth_error"


class EmailTaken(AuthError):
    code = "email_taken"


class UploadError(PortalError):
    code = "upload_error"
