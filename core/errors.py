"""
Typed exceptions for billing failures.

Every error carries a human-readable message that is returned to the caller
verbatim, plus a stable machine code. The API layer maps each class to an
HTTP status (see api/errors.py).
"""


class BillingError(Exception):
    """Base class for billing and invoicing errors."""

    code = "BILLING_ERROR"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(BillingError):
    """Bad input shape or range. Raised before any mutation."""

    code = "VALIDATION_ERROR"


class AuthorizationError(BillingError):
    """Caller lacks the role required for the operation."""

    code = "AUTHORIZATION_DENIED"


class NotFoundError(BillingError):
    """Referenced entity does not exist (or is not visible to the caller)."""

    code = "NOT_FOUND"


class StateConflict(BillingError):
    """Operation is not valid in the entity's current state."""

    code = "STATE_CONFLICT"


class InvalidTransition(StateConflict):
    """Requested state change is a no-op or not allowed from here."""

    code = "INVALID_TRANSITION"


class NoSubscription(StateConflict):
    """Operation needs an external subscription and the tenant has none."""

    code = "NO_SUBSCRIPTION"


class NotComped(StateConflict):
    """Comp removal on a tenant that is not comped."""

    code = "NOT_COMPED"


class NotApplicable(StateConflict):
    """Override does not apply to this tenant (comped, or no subscription)."""

    code = "NOT_APPLICABLE"


class ExternalProviderError(BillingError):
    """The subscription/payment provider call failed."""

    code = "EXTERNAL_PROVIDER_ERROR"

    def __init__(self, message: str, provider_code: str | None = None):
        self.provider_code = provider_code
        super().__init__(message)
