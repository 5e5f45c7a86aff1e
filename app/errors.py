"""
Exception taxonomy for the comparison pipeline.
Every error carries a stable error_code so callers can map it to a status.
"""


class PipelineError(Exception):
    """Fatal pipeline error."""
    def __init__(self, message: str, error_code: str = "ERR_PIPELINE"):
        self.message = message
        self.error_code = error_code
        super().__init__(message)


class PreconditionError(PipelineError):
    """Raised before any document is touched (credential, bid count, missing project)."""
    def __init__(self, message: str, error_code: str = "ERR_PRECONDITION"):
        super().__init__(message, error_code)


class CompletionError(PipelineError):
    """The completion service failed after all attempts."""
    def __init__(self, message: str, error_code: str = "ERR_COMPLETION", retryable: bool = True):
        self.retryable = retryable
        super().__init__(message, error_code)


class StageDecodeError(PipelineError):
    """A completion could not be decoded into the stage's output shape."""
    def __init__(self, stage: str, message: str):
        self.stage = stage
        super().__init__(f"[{stage}] {message}", "ERR_DECODE")


class DocumentError(PipelineError):
    """A single bid document could not be fetched or read."""
    def __init__(self, doc_id: str, message: str, error_code: str = "ERR_DOCUMENT"):
        self.doc_id = doc_id
        super().__init__(message, error_code)
