"""Custom exceptions for the rampcut backend.

Every error carries a machine-readable ``code`` and an HTTP ``status_code`` so
the API layer can translate it without knowing the concrete class.
"""

from typing import Any


class RampcutError(Exception):
    """Base exception for all rampcut application errors."""

    code: str = "INTERNAL_ERROR"
    status_code: int = 500
    message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: str | None = None,
        *,
        code: str | None = None,
        status_code: int | None = None,
    ):
        self.message = message or self.__class__.message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for an API error body."""
        return {"code": self.code, "detail": self.message}


# =============================================================================
# Resource Not Found Errors (404)
# =============================================================================


class ResourceNotFoundError(RampcutError):
    """Base class for resource not found errors."""

    status_code = 404


class ProjectNotFoundError(ResourceNotFoundError):
    """Project not found."""

    code = "PROJECT_NOT_FOUND"
    message = "Project not found"

    def __init__(self, project_id: str | None = None):
        message = f"Project not found: {project_id}" if project_id else self.message
        super().__init__(message)


class ExportJobNotFoundError(ResourceNotFoundError):
    """Export job not found."""

    code = "EXPORT_JOB_NOT_FOUND"
    message = "Export job not found"

    def __init__(self, job_id: str | None = None):
        message = f"Export job not found: {job_id}" if job_id else self.message
        super().__init__(message)


# =============================================================================
# Validation Errors (422)
# =============================================================================


class ValidationError(RampcutError):
    """Malformed or missing timeline data, rejected before any rendering starts."""

    code = "VALIDATION_ERROR"
    status_code = 422
    message = "Invalid timeline data"

    def __init__(self, message: str | None = None, *, clip_id: str | None = None):
        self.clip_id = clip_id
        if message and clip_id:
            message = f"Clip {clip_id}: {message}"
        super().__init__(message)


class ExportNotReadyError(RampcutError):
    """The export has not finished successfully, so there is nothing to download."""

    code = "EXPORT_NOT_READY"
    status_code = 400
    message = "Export not complete"


# =============================================================================
# Render Errors (surface as a FAILED job, never retried)
# =============================================================================


class RenderError(RampcutError):
    """Base class for failures while driving the external encoder."""

    code = "RENDER_FAILED"
    status_code = 500
    message = "Render failed"


class ExternalToolMissingError(RenderError):
    """The encoder binary could not be started at all.

    This is an environment/configuration problem, not a content problem.
    """

    code = "EXTERNAL_TOOL_MISSING"
    message = "External encoder not found"

    def __init__(self, tool_path: str):
        self.tool_path = tool_path
        super().__init__(
            f'Encoder not found at "{tool_path}". '
            "This is a server configuration problem: install FFmpeg or set FFMPEG_PATH."
        )


class ExternalToolError(RenderError):
    """The encoder ran and exited with a non-zero status."""

    code = "EXTERNAL_TOOL_ERROR"
    message = "External encoder failed"

    def __init__(self, returncode: int, stderr_tail: str, *, stage: str | None = None):
        self.returncode = returncode
        self.stderr_tail = stderr_tail
        self.stage = stage
        prefix = f"{stage}: " if stage else ""
        super().__init__(
            f"{prefix}FFmpeg exited with code {returncode}: {stderr_tail}"
        )


class RenderCancelledError(RenderError):
    """The job was cancelled while it was running."""

    code = "RENDER_CANCELLED"
    message = "Cancelled by request"

    def __init__(self, message: str | None = None):
        super().__init__(f"Cancelled: {message}" if message else "Cancelled by request")
