"""API error classes.

Every failure a credential operation can produce is an APIError subclass
with a machine-readable code, a public message, and an HTTP status.

Unknown email and wrong password share one public message, as do missing,
expired and consumed codes. The precise cause lives on ``reason`` for logs
and tests only.
"""


class APIError(Exception):
    """Base class for API errors.

    All API errors have a code, message, and HTTP status.
    Subclasses set default status_code.

    Attributes:
        code: Machine-readable error code (e.g., "NOT_FOUND").
        message: Human-readable error message.
        status_code: HTTP status code to return.
        details: Optional list of additional error details.
        headers: Optional extra response headers (e.g., Retry-After).
    """

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 500,
        details: list[dict] | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details
        self.headers = headers
        super().__init__(message)


class ValidationError(APIError):
    """Field validation failed (400).

    Use for request body validation errors, query param errors, etc.
    """

    def __init__(
        self,
        message: str,
        details: list[dict] | None = None,
    ) -> None:
        super().__init__(
            code="VALIDATION_ERROR",
            message=message,
            status_code=400,
            details=details,
        )


class UnauthorizedError(APIError):
    """Authentication required (401)."""

    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(
            code="UNAUTHORIZED",
            message=message,
            status_code=401,
        )


class InvalidCredentialsError(APIError):
    """Email/password pair rejected (401).

    Raised for unknown email, password-less (federated-only) account, and
    wrong password alike.
    """

    def __init__(self) -> None:
        super().__init__(
            code="INVALID_CREDENTIALS",
            message="Invalid email or password",
            status_code=401,
        )


class EmailNotVerifiedError(APIError):
    """Password was correct but the email is still unverified (403)."""

    def __init__(self) -> None:
        super().__init__(
            code="EMAIL_NOT_VERIFIED",
            message="Please verify your email before signing in.",
            status_code=403,
        )


class SubjectInactiveError(APIError):
    """Account exists but access is blocked (403).

    Deactivated or soft-deleted accounts. Surfaced distinctly so the
    client can tell the user to contact support instead of retrying.
    """

    def __init__(self, message: str = "This account is inactive") -> None:
        super().__init__(
            code="ACCOUNT_INACTIVE",
            message=message,
            status_code=403,
        )


# =============================================================================
# Verification codes
# =============================================================================


class InvalidOrExpiredCodeError(APIError):
    """Verification code rejected (400).

    Base for the three diagnostic causes. All share one public message.
    """

    reason = "invalid"

    def __init__(self) -> None:
        super().__init__(
            code="INVALID_OR_EXPIRED_CODE",
            message="Invalid or expired code",
            status_code=400,
        )


class CodeNotFoundError(InvalidOrExpiredCodeError):
    """No token matches (user, method, code hash)."""

    reason = "not_found"


class CodeExpiredError(InvalidOrExpiredCodeError):
    """Matching token exists but its expiry has passed."""

    reason = "expired"


class CodeAlreadyUsedError(InvalidOrExpiredCodeError):
    """Matching token was already consumed (or lost a concurrent race)."""

    reason = "already_used"


# =============================================================================
# Session tokens
# =============================================================================


class InvalidSessionError(APIError):
    """Session token rejected (401).

    Base for signature, expiry, and type failures. The caller must
    re-authenticate regardless of the cause.
    """

    reason = "invalid"

    def __init__(self) -> None:
        super().__init__(
            code="INVALID_SESSION",
            message="Invalid or expired session",
            status_code=401,
        )


class TokenMalformedError(InvalidSessionError):
    """Structure, signature, or claim anomaly."""

    reason = "malformed"


class TokenExpiredError(InvalidSessionError):
    """Signature is valid but exp has passed."""

    reason = "expired"


class TokenWrongTypeError(InvalidSessionError):
    """Access token presented where a refresh token is expected, or vice versa."""

    reason = "wrong_type"


class RefreshExpiredError(InvalidSessionError):
    """Refresh token is past its expiry."""

    reason = "refresh_expired"


class InvalidRefreshError(InvalidSessionError):
    """Refresh token is malformed or not refresh-typed."""

    reason = "invalid_refresh"


# =============================================================================
# Passwords
# =============================================================================


class WeakPasswordError(APIError):
    """Password fails the strength policy (422).

    Violations are itemized in details; safe to disclose since they say
    nothing about account state.
    """

    def __init__(self, violations: list[str], messages: list[str]) -> None:
        self.violations = violations
        super().__init__(
            code="WEAK_PASSWORD",
            message="Password does not meet the strength requirements",
            status_code=422,
            details=[
                {"violation": violation, "message": message}
                for violation, message in zip(violations, messages, strict=True)
            ],
        )


class CompromisedPasswordError(APIError):
    """Password appears in a breach corpus (422)."""

    def __init__(self) -> None:
        super().__init__(
            code="PASSWORD_BREACHED",
            message=(
                "This password has appeared in a data breach. "
                "Please choose a different one."
            ),
            status_code=422,
        )


# =============================================================================
# Throttling, conflicts, infrastructure
# =============================================================================


class RateLimitExceededError(APIError):
    """Too many requests for this key and action (429).

    Args:
        retry_after: Seconds until the caller may try again.
    """

    def __init__(self, retry_after: int) -> None:
        self.retry_after = retry_after
        super().__init__(
            code="RATE_LIMITED",
            message=f"Too many requests. Try again in {retry_after} seconds.",
            status_code=429,
            details=[{"retry_after": retry_after}],
            headers={"Retry-After": str(retry_after)},
        )


class ConflictError(APIError):
    """Duplicate or conflicting resource (409).

    Accepts custom code for specific conflict types.
    """

    def __init__(
        self,
        code: str,
        message: str,
        details: list[dict] | None = None,
    ) -> None:
        super().__init__(
            code=code,
            message=message,
            status_code=409,
            details=details,
        )


class FederatedLoginDisabledError(APIError):
    """Federated login requested but no identity provider is configured (503)."""

    def __init__(self) -> None:
        super().__init__(
            code="FEDERATED_LOGIN_DISABLED",
            message="Federated login is not available",
            status_code=503,
        )


class InternalError(APIError):
    """Unexpected server error (500).

    Use for unhandled exceptions. Never expose stack traces to clients.
    """

    def __init__(self, message: str = "An unexpected error occurred") -> None:
        super().__init__(
            code="INTERNAL_ERROR",
            message=message,
            status_code=500,
        )


class DuplicateEmailError(Exception):
    """Repository-level signal: a live user with this email already exists.

    Raised by UserRepository.create after the savepoint rolled back, so
    the session remains usable. Not an APIError; callers translate it.
    """
