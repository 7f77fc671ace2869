from enum import Enum
from typing import Any, Dict, Optional
from fastapi import HTTPException, status


class ErrorCode(str, Enum):
    """Standardized error codes for the API."""
    # Validation errors (2xxx)
    INVALID_INPUT = "VAL_2001"
    MISSING_SOURCE_VIDEO = "VAL_2002"

    # Resource errors (3xxx)
    SOURCE_NOT_FOUND = "RES_3002"
    JOB_NOT_FOUND = "RES_3003"
    JOB_ALREADY_ACTIVE = "RES_3004"
    JOB_NOT_FAILED = "RES_3005"

    # Processing errors (4xxx)
    PROCESSING_FAILED = "PROC_4001"
    DOWNLOAD_FAILED = "PROC_4002"
    TRANSCRIPTION_FAILED = "PROC_4003"
    TRANSLATION_FAILED = "PROC_4004"
    VIDEO_PROCESSING_FAILED = "PROC_4005"

    # External service errors (5xxx)
    QUEUE_ERROR = "EXT_5003"

    # System errors (9xxx)
    INTERNAL_ERROR = "SYS_9001"


class APIException(HTTPException):
    """Base exception class for API errors with standardized error codes."""

    def __init__(
        self,
        error_code: ErrorCode,
        message: str,
        status_code: int = status.HTTP_400_BAD_REQUEST,
        details: Optional[Dict[str, Any]] = None
    ):
        self.error_code = error_code
        self.details = details
        super().__init__(status_code=status_code, detail=message)


class ValidationException(APIException):
    """Exception for validation errors."""
    def __init__(
        self,
        error_code: ErrorCode,
        message: str,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            error_code=error_code,
            message=message,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details=details
        )


class ResourceException(APIException):
    """Exception for missing resources."""
    def __init__(
        self,
        error_code: ErrorCode,
        message: str,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            error_code=error_code,
            message=message,
            status_code=status.HTTP_404_NOT_FOUND,
            details=details
        )


class ConflictException(APIException):
    """Exception for requests that clash with the current job state."""
    def __init__(
        self,
        error_code: ErrorCode,
        message: str,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            error_code=error_code,
            message=message,
            status_code=status.HTTP_409_CONFLICT,
            details=details
        )


class ExternalServiceException(APIException):
    """Exception for external service errors."""
    def __init__(
        self,
        error_code: ErrorCode,
        message: str,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            error_code=error_code,
            message=message,
            status_code=status.HTTP_502_BAD_GATEWAY,
            details=details
        )


class StageError(Exception):
    """Base class for errors raised while a pipeline stage runs.

    Attributes:
        message: The error message
        error_code: Code stored alongside the failure for programmatic handling
    """

    message: str
    error_code: ErrorCode

    def __init__(self, message: str, error_code: ErrorCode = ErrorCode.PROCESSING_FAILED):
        self.message = message
        self.error_code = error_code
        super().__init__(message)


class TransientStageError(StageError):
    """A stage failure that may succeed on a later delivery."""


class PermanentStageError(StageError):
    """A stage failure that retrying cannot fix, e.g. an unreadable source video."""


class JobCancelled(StageError):
    """Raised at a stage boundary when the job was cancelled while running.

    ``superseded`` is set when the job was re-armed for a newer attempt, which
    now owns the job record and its published artifacts.
    """

    def __init__(self, job_id: Any, superseded: bool = False):
        self.superseded = superseded
        reason = "superseded by a newer attempt" if superseded else "cancelled"
        super().__init__(f"Job {job_id} was {reason}")


class CleanupError(Exception):
    """Raised when a temporary file or remote artifact could not be removed.

    Always logged by the caller, never allowed to change a job outcome.
    """

    path: str

    def __init__(self, path: str, reason: str):
        self.path = path
        super().__init__(f"Failed to remove {path}: {reason}")
