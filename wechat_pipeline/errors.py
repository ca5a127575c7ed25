from __future__ import annotations

from typing import Any, Dict, Optional


class PipelineError(Exception):
    """Base error for the article pipeline."""

    code = "pipeline_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


class UpstreamFailure(PipelineError):
    """A generation back end call raised or rejected."""

    code = "upstream_failure"


class AnalysisIncomplete(PipelineError):
    """Illustration planning returned fewer plans than requested."""

    code = "analysis_incomplete"


class AnchorNotFound(PipelineError):
    """No ladder step could place a snippet in the document."""

    code = "anchor_not_found"


class MalformedPayload(PipelineError):
    """A successful-looking response had no image or audio data."""

    code = "malformed_payload"
