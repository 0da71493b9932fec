from enum import Enum as PyEnum


class ErrorCode(str, PyEnum):
    """Stable error codes returned to callers alongside a human message."""

    # Authentication
    UNAUTHENTICATED = "UNAUTHENTICATED"
    SESSION_ENDED = "SESSION_ENDED"

    # Authorization (permanent denials)
    ROLE_FORBIDDEN = "ROLE_FORBIDDEN"
    SELF_ACTION_FORBIDDEN = "SELF_ACTION_FORBIDDEN"
    TARGET_IS_PRIVILEGED = "TARGET_IS_PRIVILEGED"
    NOT_TEAM_MEMBER = "NOT_TEAM_MEMBER"
    IMPERSONATION_UNAUTHORIZED = "IMPERSONATION_UNAUTHORIZED"
    SELF_IMPERSONATION = "SELF_IMPERSONATION"

    # Preconditions (caller-fixable)
    REASON_REQUIRED = "REASON_REQUIRED"
    INVITE_EXPIRED = "INVITE_EXPIRED"
    EMAIL_MISMATCH = "EMAIL_MISMATCH"
    ALREADY_MEMBER = "ALREADY_MEMBER"
    INVITE_NOT_PENDING = "INVITE_NOT_PENDING"
    INVITE_ALREADY_PENDING = "INVITE_ALREADY_PENDING"
    CONFIRMATION_REQUIRED = "CONFIRMATION_REQUIRED"
    INVALID_TOKEN = "INVALID_TOKEN"
    VALIDATION_ERROR = "VALIDATION_ERROR"

    # Lookups
    USER_NOT_FOUND = "USER_NOT_FOUND"
    TEAM_NOT_FOUND = "TEAM_NOT_FOUND"
    MEMBER_NOT_FOUND = "MEMBER_NOT_FOUND"
    INVITE_NOT_FOUND = "INVITE_NOT_FOUND"
    SESSION_NOT_FOUND = "SESSION_NOT_FOUND"

    # Conflicts
    TEAM_EXISTS = "TEAM_EXISTS"
    EMAIL_ALREADY_EXISTS = "EMAIL_ALREADY_EXISTS"
    CONCURRENT_MODIFICATION = "CONCURRENT_MODIFICATION"

    # Dependencies
    IDP_UNAVAILABLE = "IDP_UNAVAILABLE"

    # Internal
    INVARIANT_VIOLATION = "INVARIANT_VIOLATION"


class TeamAuthException(Exception):
    """Base exception for team auth"""

    default_code = ErrorCode.VALIDATION_ERROR

    def __init__(self, message: str, code: ErrorCode | None = None):
        super().__init__(message)
        self.code = code or self.default_code


class UnauthorizedException(TeamAuthException):
    """Raised when JWT validation fails"""

    default_code = ErrorCode.UNAUTHENTICATED


class NotFoundException(TeamAuthException):
    """Raised when resource not found"""

    default_code = ErrorCode.MEMBER_NOT_FOUND


class ForbiddenException(TeamAuthException):
    """Raised when the policy engine denies an operation"""

    default_code = ErrorCode.ROLE_FORBIDDEN


class ValidationException(TeamAuthException):
    """Raised for business logic validation errors"""

    pass


class ConflictException(TeamAuthException):
    """Raised when a write collides with existing or concurrently written state"""

    default_code = ErrorCode.CONCURRENT_MODIFICATION


class DependencyException(TeamAuthException):
    """Raised when an external collaborator cannot be reached"""

    default_code = ErrorCode.IDP_UNAVAILABLE


class InvariantViolationException(TeamAuthException):
    """
    Raised by the persistence layer when a write would break a structural
    invariant (second owner, ownerless team, super_admin row mutation).

    Reaching this means a policy check let something through that it
    should not have.
    """

    default_code = ErrorCode.INVARIANT_VIOLATION
