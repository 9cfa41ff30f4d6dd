"""
Exception types shared by the pipeline, the runner and the HTTP layer.
"""

from typing import Optional


class ManimJobError(Exception):
    """Base class for every error raised by the video generator."""


class ConfigurationError(ManimJobError):
    """Missing credentials or worker address. Raised before any job work begins."""


class PipelineError(ManimJobError):
    """A pipeline stage could not complete."""


class ScriptParseError(PipelineError):
    pass


class GenerationError(PipelineError):
    """The language or speech service failed or returned unusable output."""


class ToolError(PipelineError):
    """An external command failed, timed out or produced no artifact."""

    def __init__(self, message: str, output: str = ""):
        super().__init__(message)
        self.output = output


class DelegationError(ManimJobError):
    """Forwarding a job to the remote worker failed."""

    def __init__(self, message: str, details: Optional[str] = None):
        super().__init__(message)
        self.details = details


class WorkerUnreachable(DelegationError):
    pass


class WorkerResponseError(DelegationError):
    pass
