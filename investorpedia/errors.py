"""
Billing error taxonomy.

Every error carries the HTTP status the error-mapping layer
(`investorpedia.error_handlers`) uses when it reaches a route boundary.
"""


class BillingError(Exception):
    status_code = 500

    def __init__(self, message, payload=None):
        super().__init__(message)
        self.message = message
        self.payload = payload or {}

    def to_dict(self):
        return {"message": self.message, **self.payload}


class ValidationError(BillingError):
    """Bad input the user can correct."""
    status_code = 400


class NotFoundError(BillingError):
    """Missing user, plan or subscription."""
    status_code = 404


class AuthenticationError(BillingError):
    """Webhook signature or credential failure."""
    status_code = 400


class UpstreamError(BillingError):
    """The payment processor API call failed."""
    status_code = 500


class ConflictError(BillingError):
    """Stale or duplicate work. Absorbed internally wherever possible."""
    status_code = 409


class LockTimeout(ConflictError):
    """A per-resource lock could not be acquired in time."""
