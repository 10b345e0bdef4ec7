# gofresh/errors.py
# List of exceptions


class MarketplaceError(Exception):
    """Base class for marketplace exceptions."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(MarketplaceError):
    """Raised when input data fails validation."""


class NotFoundError(MarketplaceError):
    """Raised when a listing, sale or notification does not exist."""

    status_code = 404


class AuthRequiredError(MarketplaceError):
    """Raised when a request needs a logged-in user."""

    status_code = 401


class AccessDeniedError(MarketplaceError):
    """Raised when the caller's role or ownership does not allow the action."""

    status_code = 403


class BidRejectedError(MarketplaceError):
    """Raised when the bid validator (or a lost race) rejects a bid."""

    status_code = 409


class PaymentRejectedError(MarketplaceError):
    """Raised when the payment gate refuses a checkout."""

    status_code = 409


class PaymentProviderError(MarketplaceError):
    """Raised when the payment provider call fails or a signature does not verify."""

    status_code = 502


class BackendUnavailableError(MarketplaceError):
    """Raised when the database call itself fails; the user should simply retry."""

    status_code = 503


def rejection_error(code, reason: str, default=BidRejectedError) -> MarketplaceError:
    """Turn a rule rejection into the matching exception: auth 401, role 403, anything else `default`."""
    if code == "auth":
        return AuthRequiredError(reason)
    if code == "role":
        return AccessDeniedError(reason)
    return default(reason)
