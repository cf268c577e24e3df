"""
Custom exceptions for the snake classification pipeline.

Request-scoped errors (DecodeError, InferenceError) are returned to the
caller inside a ClassificationResult. Session-scoped errors move the
session to FAILED and require an explicit retry.
"""

from typing import Any, Dict, Optional


class PipelineError(Exception):
    """Base exception for classification pipeline errors."""

    stage = "pipeline"
    session_scoped = False

    def __init__(self, message: str, stage: Optional[str] = None):
        self.message = message
        if stage is not None:
            self.stage = stage
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-serializable dictionary."""
        return {
            "type": type(self).__name__,
            "stage": self.stage,
            "message": self.message,
        }


class DecodeError(PipelineError):
    """Raised when a frame or encoded image cannot be decoded."""

    stage = "decode"


class InferenceError(PipelineError):
    """Raised when the model call or post-processing fails for one request."""

    stage = "inference"


class DataLoadError(PipelineError):
    """Raised when the label list or reference table cannot be loaded."""

    stage = "data_load"
    session_scoped = True

    def __init__(self, path: str, reason: str):
        self.path = str(path)
        self.reason = reason
        super().__init__(f"Failed to load '{self.path}': {reason}")


class ModelLoadError(PipelineError):
    """Raised when the model asset is missing or does not match the labels."""

    stage = "model_load"
    session_scoped = True


class LoadTimeoutError(PipelineError, TimeoutError):
    """Raised when session loading exceeds its deadline."""

    stage = "load"
    session_scoped = True

    def __init__(self, timeout_s: float):
        self.timeout_s = timeout_s
        super().__init__(f"Loading did not complete within {timeout_s:.1f}s")
