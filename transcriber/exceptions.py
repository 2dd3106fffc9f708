class PipelineError(Exception):
    """Base class for orchestration failures that carry a machine-readable code."""

    code = "pipeline_error"

    def __init__(self, message: str = "", *, code: str | None = None):
        super().__init__(message or self.code)
        if code:
            self.code = code


class AudioResolutionError(PipelineError):
    """No supplier-reachable audio could be produced; the user has to re-upload."""

    code = "manual_upload_required"


class MediaToolError(PipelineError):
    """yt-dlp / ffmpeg / ffprobe exited non-zero or timed out."""

    code = "media_tool_failed"


class SupplierError(PipelineError):
    code = "supplier_failed"

    def __init__(self, message: str = "", *, status: int | None = None, code: str | None = None):
        super().__init__(message, code=code)
        self.status = status
