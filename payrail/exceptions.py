"""
Custom exception classes and FastAPI exception handlers.

The service layer raises domain-specific errors (like RoutingUnsupportedError)
without importing HTTP concepts. The handler layer then translates these into
HTTP responses with a stable shape:

    {"detail": "...", "error_type": "...", "code": "..."}

`error_type` is the lowercase family name, `code` a stable machine-readable
identifier that clients can switch on.

Exception hierarchy:
    PayrailError (base)
    ├── AuthRequiredError          — missing/invalid bearer token
    ├── InvalidCredentialsError    — wrong email or password at login
    ├── AccessDeniedError          — caller may not touch this resource
    ├── InvalidInputError          — business-rule validation failure
    │   └── InvalidPayloadError    — malformed webhook body
    ├── NotFoundError
    │   ├── TransactionNotFoundError
    │   ├── ProviderConfigNotFoundError
    │   └── MerchantProfileNotFoundError
    ├── ProviderUnavailableError   — upstream non-2xx, timeout, transport error
    ├── RoutingUnsupportedError    — no provider serves this request
    │   ├── CurrencyNotSupportedError
    │   └── ManualWithdrawalError
    ├── SignatureInvalidError      — webhook authenticity check failed
    ├── InsufficientFundsError     — withdrawal larger than balance + fee
    ├── DuplicateEmailError
    └── DuplicateConfigError       — second active config for provider+country
"""

import uuid
from decimal import Decimal

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse


# ---------------------------------------------------------------------------
# Base exception
# ---------------------------------------------------------------------------

class PayrailError(Exception):
    """Base exception for all domain errors."""

    status_code = 400
    error_type = "error"
    code = "ERROR"

    def __init__(self, detail: str = "An error occurred"):
        self.detail = detail
        super().__init__(self.detail)


# ---------------------------------------------------------------------------
# Authentication / authorization
# ---------------------------------------------------------------------------

class AuthRequiredError(PayrailError):
    status_code = 401
    error_type = "auth_required"
    code = "AUTH_REQUIRED"

    def __init__(self, detail: str = "Could not validate credentials"):
        super().__init__(detail)


class InvalidCredentialsError(PayrailError):
    """Raised when login credentials are incorrect."""

    status_code = 401
    error_type = "invalid_credentials"
    code = "INVALID_CREDENTIALS"

    def __init__(self):
        super().__init__("Invalid email or password")


class AccessDeniedError(PayrailError):
    """Raised when a user attempts to access a resource they don't own."""

    status_code = 403
    error_type = "access_denied"
    code = "ACCESS_DENIED"

    def __init__(self, detail: str = "You do not have access to this resource"):
        super().__init__(detail)


# ---------------------------------------------------------------------------
# Input validation
# ---------------------------------------------------------------------------

class InvalidInputError(PayrailError):
    status_code = 422
    error_type = "invalid_input"
    code = "INVALID_INPUT"


class InvalidPayloadError(InvalidInputError):
    """Raised when an authenticated webhook body cannot be parsed."""

    status_code = 400
    error_type = "invalid_payload"
    code = "INVALID_PAYLOAD"

    def __init__(self, detail: str = "Invalid payload"):
        super().__init__(detail)


# ---------------------------------------------------------------------------
# Not found
# ---------------------------------------------------------------------------

class NotFoundError(PayrailError):
    status_code = 404
    error_type = "not_found"
    code = "NOT_FOUND"


class TransactionNotFoundError(NotFoundError):
    """
    Raised when a notification or poll references an unknown transaction.

    Unknown references never create records.
    """

    error_type = "transaction_not_found"
    code = "TRANSACTION_NOT_FOUND"

    def __init__(self, reference: str | uuid.UUID):
        self.reference = str(reference)
        super().__init__(f"Transaction {reference} not found")


class ProviderConfigNotFoundError(NotFoundError):
    code = "PROVIDER_CONFIG_NOT_FOUND"

    def __init__(self, detail: str):
        super().__init__(detail)


class NotificationChannelMissingError(ProviderConfigNotFoundError):
    """The config exists but no IPN has been registered for it yet."""

    code = "IPN_NOT_REGISTERED"


class MerchantProfileNotFoundError(NotFoundError):
    code = "MERCHANT_PROFILE_NOT_FOUND"

    def __init__(self):
        super().__init__("Merchant profile not found")


# ---------------------------------------------------------------------------
# Providers and routing
# ---------------------------------------------------------------------------

class ProviderUnavailableError(PayrailError):
    """
    Raised when an external provider call fails.

    Attributes:
        provider: The provider name.
        upstream_status: HTTP status returned by the provider, or None on
            timeout / transport failure.
        provider_detail: Redacted, truncated upstream message.
        outcome_unknown: The request may have reached the provider and been
            acted on (a money-moving call that timed out). The caller must
            not treat it as a rejection.
    """

    status_code = 502
    error_type = "provider_unavailable"
    code = "PROVIDER_UNAVAILABLE"

    def __init__(
        self,
        provider: str,
        upstream_status: int | None = None,
        provider_detail: str | None = None,
        outcome_unknown: bool = False,
    ):
        self.provider = provider
        self.upstream_status = upstream_status
        self.provider_detail = provider_detail
        self.outcome_unknown = outcome_unknown
        super().__init__(f"Payment provider {provider} is unavailable")


class RoutingUnsupportedError(PayrailError):
    status_code = 422
    error_type = "routing_unsupported"
    code = "ROUTING_UNSUPPORTED"


class CurrencyNotSupportedError(RoutingUnsupportedError):
    """Raised when the selected provider settles in a different currency."""

    code = "CURRENCY_NOT_SUPPORTED"

    def __init__(self, provider: str, currency: str, required_currency: str):
        self.provider = provider
        self.currency = currency
        self.required_currency = required_currency
        super().__init__(
            f"{provider} only accepts {required_currency}, got {currency}"
        )


class ManualWithdrawalError(RoutingUnsupportedError):
    code = "MANUAL_WITHDRAWAL"

    def __init__(self):
        super().__init__(
            "Manual withdrawals are not yet supported. Please contact support."
        )


class SignatureInvalidError(PayrailError):
    """Webhook authenticity failure. Never says which check failed."""

    status_code = 401
    error_type = "signature_invalid"
    code = "SIGNATURE_INVALID"

    def __init__(self):
        super().__init__("Invalid signature")


# ---------------------------------------------------------------------------
# Balances and conflicts
# ---------------------------------------------------------------------------

class InsufficientFundsError(PayrailError):
    """
    Raised when a withdrawal plus its fee exceeds the merchant balance.

    Attributes:
        requested: Amount plus fee the merchant tried to withdraw.
        available: The current balance.
    """

    status_code = 422
    error_type = "insufficient_funds"
    code = "INSUFFICIENT_FUNDS"

    def __init__(self, requested: Decimal, available: Decimal):
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient funds: requested {requested}, available {available}"
        )


class DuplicateEmailError(PayrailError):
    """Raised when attempting to register with an email that's already in use."""

    status_code = 409
    error_type = "duplicate_email"
    code = "DUPLICATE_EMAIL"

    def __init__(self, email: str):
        self.email = email
        super().__init__(f"Email {email} is already registered")


class DuplicateConfigError(PayrailError):
    status_code = 409
    error_type = "duplicate_config"
    code = "DUPLICATE_CONFIG"

    def __init__(self, provider: str, country_code: str):
        self.provider = provider
        self.country_code = country_code
        super().__init__(
            f"An active {provider} configuration already exists for {country_code}"
        )


# ---------------------------------------------------------------------------
# FastAPI exception handlers
# ---------------------------------------------------------------------------

def _error_body(exc: PayrailError) -> dict:
    return {"detail": exc.detail, "error_type": exc.error_type, "code": exc.code}


def register_exception_handlers(app: FastAPI) -> None:
    """
    Register custom exception handlers with the FastAPI application.

    Starlette resolves handlers along the exception's MRO, so the specific
    handlers below win over the PayrailError fallback.

    This is called once during app startup in main.py.
    """

    @app.exception_handler(PayrailError)
    async def payrail_error_handler(
        request: Request, exc: PayrailError
    ) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content=_error_body(exc))

    @app.exception_handler(AuthRequiredError)
    async def auth_required_handler(
        request: Request, exc: AuthRequiredError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body(exc),
            headers={"WWW-Authenticate": "Bearer"},
        )

    @app.exception_handler(InsufficientFundsError)
    async def insufficient_funds_handler(
        request: Request, exc: InsufficientFundsError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={
                **_error_body(exc),
                "requested": str(exc.requested),
                "available": str(exc.available),
            },
        )

    @app.exception_handler(ProviderUnavailableError)
    async def provider_unavailable_handler(
        request: Request, exc: ProviderUnavailableError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={
                **_error_body(exc),
                "provider": exc.provider,
                "upstream_status": exc.upstream_status,
                "provider_detail": exc.provider_detail,
            },
        )

    @app.exception_handler(CurrencyNotSupportedError)
    async def currency_not_supported_handler(
        request: Request, exc: CurrencyNotSupportedError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={
                **_error_body(exc),
                "provider": exc.provider,
                "required_currency": exc.required_currency,
            },
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        # Only field locations and error kinds; raw input never goes back out
        errors = [
            {"loc": [str(part) for part in err.get("loc", ())], "type": err.get("type")}
            for err in exc.errors()
        ]
        return JSONResponse(
            status_code=422,
            content={
                "detail": "Request validation failed",
                "error_type": "invalid_input",
                "code": "INVALID_INPUT",
                "errors": errors,
            },
        )
