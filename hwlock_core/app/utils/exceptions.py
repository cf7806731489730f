from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from datetime import datetime
from typing import Any, Dict, Optional


class HWLockException(HTTPException):
    """Base exception for license core errors"""
    def __init__(
        self,
        status_code: int,
        detail: Any = None,
        error_code: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.error_code = error_code or str(status_code)


class NotFoundError(HWLockException):
    def __init__(self, detail: str = "Not found"):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=detail,
            error_code="NOT_FOUND"
        )


class ValidationFailed(HWLockException):
    """Malformed or out-of-range input, reported as (field, reason)"""
    def __init__(self, field: str, reason: str):
        super().__init__(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"field": field, "reason": reason},
            error_code="VALIDATION_FAILED"
        )
        self.field = field
        self.reason = reason


class NotProvisionedError(HWLockException):
    def __init__(self, detail: str = "License has not been provisioned on any device"):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=detail,
            error_code="NOT_PROVISIONED"
        )


class ConflictError(HWLockException):
    def __init__(self, detail: str = "Conflict"):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=detail,
            error_code="CONFLICT"
        )


class SecurityMismatchError(HWLockException):
    """Hardware id differs from the bound one. Ids go to the audit log only."""
    def __init__(self, detail: str = "Hardware ID mismatch - license bound to another device"):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=detail,
            error_code="HARDWARE_MISMATCH"
        )


class LicenseExpiredError(HWLockException):
    def __init__(self, detail: str = "License has expired"):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=detail,
            error_code="LICENSE_EXPIRED"
        )
        self.status = "expired"


class LicenseSuspendedError(HWLockException):
    def __init__(self, detail: str = "License is suspended"):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=detail,
            error_code="LICENSE_SUSPENDED"
        )
        self.status = "suspended"


async def hwlock_exception_handler(request: Request, exc: HWLockException):
    """Handler for license core exceptions"""
    content = {
        "timestamp": datetime.utcnow().isoformat(),
        "path": str(request.url.path),
        "detail": exc.detail,
        "error_code": exc.error_code,
        "status_code": exc.status_code
    }
    if getattr(exc, "status", None):
        content["status"] = exc.status
    return JSONResponse(status_code=exc.status_code, content=content, headers=exc.headers)


async def http_exception_handler(request: Request, exc: HTTPException):
    """Handler for standard HTTP exceptions"""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "timestamp": datetime.utcnow().isoformat(),
            "path": str(request.url.path),
            "detail": exc.detail,
            "status_code": exc.status_code
        },
        headers=getattr(exc, "headers", None)
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Flatten pydantic errors into (field, reason) pairs"""
    errors = []
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")]
        errors.append({"field": ".".join(loc) or None, "reason": err.get("msg", "invalid")})
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "timestamp": datetime.utcnow().isoformat(),
            "path": str(request.url.path),
            "errors": errors,
            "error_code": "VALIDATION_FAILED",
            "status_code": 422
        }
    )
