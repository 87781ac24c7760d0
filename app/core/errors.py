"""
Error taxonomy of the access core.
Each error carries one user-safe message and the HTTP status the API answers with;
internal causes stay in logs.
"""


class AccessCoreError(Exception):
    """Base class: `message` is safe to show to the user."""

    status_code = 400
    default_message = "Request failed"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(AccessCoreError):
    """Malformed or undeliverable input."""

    status_code = 422
    default_message = "Invalid input"


class AuthenticationError(AccessCoreError):
    """Bad credentials; message comes verbatim from the identity provider."""

    status_code = 401
    default_message = "Invalid login credentials"


class DeviceConflictError(AccessCoreError):
    status_code = 403
    default_message = (
        "This account is already registered on another device. "
        "Please contact admin to reset."
    )

    def __init__(self) -> None:
        super().__init__(self.default_message)


class OtpInvalidOrExpired(AccessCoreError):
    """Does not tell a wrong code from an expired one."""

    status_code = 400
    default_message = "Invalid or expired verification code"

    def __init__(self) -> None:
        super().__init__(self.default_message)


class OtpRateLimitedError(AccessCoreError):
    status_code = 429
    default_message = "Too many verification codes requested. Try again later."

    def __init__(self, retry_after: int):
        self.retry_after = retry_after
        super().__init__(f"Please wait {retry_after} seconds before requesting a new code")


class DuplicatePurchaseError(AccessCoreError):
    status_code = 409
    default_message = "You have already submitted payment for this folder"


class PurchaseNotFoundError(AccessCoreError):
    status_code = 404
    default_message = "Purchase not found"


class InvalidTransitionError(AccessCoreError):
    status_code = 409
    default_message = "Purchase cannot change to this status"


class AccessDeniedError(AccessCoreError):
    status_code = 403
    default_message = "You do not have access to this folder"


class TransientIOError(AccessCoreError):
    """Storage/email failure. Retryable; already committed state is untouched."""

    status_code = 503
    default_message = "Something went wrong. Please try again."
