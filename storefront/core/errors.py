from fastapi import HTTPException, status
from typing import Any, Dict, Optional

class StorefrontException(HTTPException):
    """Base exception for the storefront API."""
    error_code = "STOREFRONT_ERROR"

    def __init__(
        self,
        status_code: int,
        detail: Any = None,
        headers: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(status_code=status_code, detail=detail, headers=headers)

class ValidationError(StorefrontException):
    """Missing or malformed input."""
    error_code = "VALIDATION_ERROR"

    def __init__(self, detail: str = "Validation failed"):
        super().__init__(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=detail
        )

class NotFoundError(StorefrontException):
    """Resource not found."""
    error_code = "NOT_FOUND"

    def __init__(self, detail: str = "Resource not found"):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=detail
        )

class InvalidReferralCodeError(NotFoundError):
    """Referral code does not belong to any user."""
    error_code = "INVALID_REFERRAL_CODE"

    def __init__(self, detail: str = "Invalid referral code"):
        super().__init__(detail=detail)

class ConflictError(StorefrontException):
    """Request conflicts with the current state of a resource."""
    error_code = "CONFLICT"

    def __init__(self, detail: str = "Conflict with current state"):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=detail
        )

class SelfReferralError(ConflictError):
    error_code = "SELF_REFERRAL"

    def __init__(self, detail: str = "Cannot use your own referral code"):
        super().__init__(detail=detail)

class AlreadyReferredError(ConflictError):
    error_code = "ALREADY_REFERRED"

    def __init__(self, detail: str = "Referral code already used"):
        super().__init__(detail=detail)

class AlreadyCompletedError(ConflictError):
    error_code = "ALREADY_COMPLETED"

    def __init__(self, detail: str = "Referral already completed"):
        super().__init__(detail=detail)

class AlreadyUsedError(ConflictError):
    error_code = "ALREADY_USED"

    def __init__(self, detail: str = "Reward has already been used"):
        super().__init__(detail=detail)

class DuplicateUserError(ConflictError):
    error_code = "DUPLICATE_USER"

    def __init__(self, detail: str = "User already exists"):
        super().__init__(detail=detail)

class ExpiredError(StorefrontException):
    """Reward is past its expiry."""
    error_code = "EXPIRED"

    def __init__(self, detail: str = "Reward has expired"):
        super().__init__(
            status_code=status.HTTP_410_GONE,
            detail=detail
        )

class UnavailableError(StorefrontException):
    """Persistence layer not configured or unreachable."""
    error_code = "SERVICE_UNAVAILABLE"

    def __init__(self, detail: str = "Database temporarily unavailable"):
        super().__init__(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=detail
        )
