"""
Error taxonomy for the Data Gateway
Typed failures for upstream calls plus the structured JSON responses used at the HTTP boundary

Features:
- Candidate-level upstream errors (timeout, HTTP status, transport, payload)
- Aggregate failure when every candidate for a resource fails
- Typed "resource unavailable" result for the unrecoverable case
- Error tracking and aggregation
- FastAPI exception handlers
"""

import logging
import traceback
from datetime import datetime
from typing import Dict, List, Optional, Tuple
from enum import Enum

from fastapi import Request, HTTPException
from fastapi.responses import JSONResponse

logger = logging.getLogger("ErrorHandler")


# ============================================
# ERROR CODES
# ============================================

class ErrorCode(str, Enum):
    # Client errors (4xx)
    BAD_REQUEST = "BAD_REQUEST"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"

    # Server errors (5xx)
    INTERNAL_ERROR = "INTERNAL_ERROR"
    EXTERNAL_API_ERROR = "EXTERNAL_API_ERROR"
    TIMEOUT_ERROR = "TIMEOUT_ERROR"
    RESOURCE_UNAVAILABLE = "RESOURCE_UNAVAILABLE"
    GATEWAY_CLOSED = "GATEWAY_CLOSED"


# ============================================
# CUSTOM EXCEPTIONS
# ============================================

class GatewayError(Exception):
    """Base exception for the data gateway"""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        status_code: int = 500,
        details: Dict = None
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        self.timestamp = datetime.now()

    def to_dict(self) -> Dict:
        return {
            "success": False,
            "error": {
                "code": self.code.value,
                "message": self.message,
                "details": self.details,
                "timestamp": self.timestamp.isoformat()
            }
        }


class ValidationError(GatewayError):
    """Input validation error"""
    def __init__(self, message: str, details: Dict = None):
        super().__init__(message, ErrorCode.VALIDATION_ERROR, 400, details)


class UpstreamError(GatewayError):
    """A single upstream candidate failed"""
    def __init__(
        self,
        url: str,
        reason: str,
        code: ErrorCode = ErrorCode.EXTERNAL_API_ERROR,
        details: Dict = None
    ):
        self.url = url
        self.reason = reason
        super().__init__(
            f"Upstream '{url}' failed: {reason}",
            code,
            502,
            {"url": url, **(details or {})}
        )


class UpstreamTimeout(UpstreamError):
    """Candidate exceeded its per-call timeout"""
    def __init__(self, url: str, timeout: float):
        self.timeout = timeout
        super().__init__(
            url,
            f"timed out after {timeout:.1f}s",
            ErrorCode.TIMEOUT_ERROR,
            {"timeout": timeout}
        )


class UpstreamHTTPError(UpstreamError):
    """Candidate answered with a non-2xx status"""
    def __init__(self, url: str, status_code: int):
        self.upstream_status = status_code
        super().__init__(url, f"HTTP {status_code}", details={"api_status_code": status_code})


class UpstreamConnectionError(UpstreamError):
    """Candidate could not be reached"""
    def __init__(self, url: str, error: Exception):
        super().__init__(url, f"{type(error).__name__}: {error}")


class UpstreamPayloadError(UpstreamError):
    """Candidate answered 2xx but the body was unusable"""
    def __init__(self, url: str, reason: str):
        super().__init__(url, f"invalid payload ({reason})")


class AggregateUpstreamFailure(GatewayError):
    """Every candidate for a resource failed"""
    def __init__(self, resource: str, failures: List[Tuple[str, str]]):
        self.resource = resource
        self.failures = list(failures)
        super().__init__(
            f"All {len(self.failures)} upstream candidate(s) failed for '{resource}'",
            ErrorCode.EXTERNAL_API_ERROR,
            502,
            {
                "resource": resource,
                "failures": [{"url": url, "reason": reason} for url, reason in self.failures],
            }
        )


class ResourceUnavailableError(GatewayError):
    """No upstream, no cached copy and no fallback dataset for a resource"""
    def __init__(self, resource: str, key: str, cause: Optional[Exception] = None):
        details = {"resource": resource, "key": key}
        if cause is not None:
            details["cause"] = str(cause)
        self.resource = resource
        self.key = key
        super().__init__(
            f"Resource '{key}' is unavailable",
            ErrorCode.RESOURCE_UNAVAILABLE,
            503,
            details
        )


class GatewayClosedError(GatewayError):
    """A dispatch queue was shut down with calls still pending"""
    def __init__(self, queue_name: str):
        super().__init__(
            f"Dispatch queue '{queue_name}' is closed",
            ErrorCode.GATEWAY_CLOSED,
            503,
            {"queue": queue_name}
        )


# ============================================
# ERROR TRACKING
# ============================================

def _format_traceback(error: BaseException) -> str:
    return "".join(traceback.format_exception(type(error), error, error.__traceback__))


class ErrorTracker:
    """Tracks and aggregates errors for monitoring"""

    def __init__(self, max_errors: int = 1000):
        self.errors: list = []
        self.max_errors = max_errors
        self.error_counts: Dict[str, int] = {}

    def track(self, error: Exception, request_path: str = None):
        """Track an error"""
        error_type = type(error).__name__

        self.error_counts[error_type] = self.error_counts.get(error_type, 0) + 1

        error_info = {
            "type": error_type,
            "message": str(error),
            "path": request_path,
            "timestamp": datetime.now().isoformat(),
            "traceback": _format_traceback(error) if not isinstance(error, GatewayError) else None
        }

        if isinstance(error, GatewayError):
            error_info["code"] = error.code.value
            error_info["details"] = error.details

        self.errors.append(error_info)

        if len(self.errors) > self.max_errors:
            self.errors = self.errors[-self.max_errors:]

        if not isinstance(error, GatewayError) or error.status_code >= 500:
            logger.error(f"Error tracked: {error_type} - {str(error)[:200]}")

    def get_stats(self) -> Dict:
        """Get error statistics"""
        return {
            "total_errors": len(self.errors),
            "error_counts": self.error_counts,
            "recent_errors": self.errors[-10:],
            "timestamp": datetime.now().isoformat()
        }

    def clear(self):
        """Clear error history"""
        self.errors.clear()
        self.error_counts.clear()


# ============================================
# FASTAPI EXCEPTION HANDLERS
# ============================================

def _tracker_for(request: Request) -> ErrorTracker:
    tracker = getattr(request.app.state, "error_tracker", None)
    if tracker is None:
        tracker = ErrorTracker()
        request.app.state.error_tracker = tracker
    return tracker


async def gateway_exception_handler(request: Request, exc: GatewayError) -> JSONResponse:
    """Handle GatewayError exceptions"""
    _tracker_for(request).track(exc, str(request.url.path))

    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict()
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handle FastAPI HTTPExceptions"""
    _tracker_for(request).track(exc, str(request.url.path))

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "error": {
                "code": ErrorCode.BAD_REQUEST.value if exc.status_code < 500 else ErrorCode.INTERNAL_ERROR.value,
                "message": exc.detail,
                "timestamp": datetime.now().isoformat()
            }
        }
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions"""
    _tracker_for(request).track(exc, str(request.url.path))

    logger.error(f"Unhandled exception: {_format_traceback(exc)}")

    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": {
                "code": ErrorCode.INTERNAL_ERROR.value,
                "message": "An unexpected error occurred",
                "timestamp": datetime.now().isoformat()
            }
        }
    )


def register_exception_handlers(app):
    """Register all exception handlers with FastAPI app"""
    app.add_exception_handler(GatewayError, gateway_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    logger.info("Exception handlers registered")
