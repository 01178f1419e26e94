"""Error taxonomy for pipeline execution and external invocation.

Every failure surfaced by the engine or by a stage is a ``PipelineError``
subclass with a stable ``kind`` string, so callers (and the CLI envelope) can
decide whether to retry the whole run, adjust the output contract, or escalate.
"""

from typing import Any, Dict, List, Optional


class PipelineError(Exception):
    """Base class for all agentpipe failures."""

    kind = "pipeline_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        """Structured form used by the tool-mode error envelope."""
        return {"type": self.kind, "message": self.message}


class UnknownStageError(PipelineError):
    """A pipeline references a stage name the registry does not know."""

    kind = "unknown_stage"

    def __init__(self, name: str):
        super().__init__(f"Unknown stage: {name}")
        self.name = name

    def to_dict(self) -> Dict[str, Any]:
        return {**super().to_dict(), "stage": self.name}


class InvalidTokenError(PipelineError):
    """A continuation token is malformed, truncated or of an unsupported version."""

    kind = "invalid_token"


class ConfigurationError(PipelineError):
    """No usable transport is configured, or a required field is missing."""

    kind = "configuration_error"


class PayloadInvalidError(PipelineError):
    """The outbound call payload does not match the static payload shape."""

    kind = "payload_invalid"


class TransportFailureError(PipelineError):
    """Non-success HTTP status, network failure, or unparseable response body."""

    kind = "transport_failure"

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        if self.status_code is not None:
            data["status_code"] = self.status_code
        return data


class EnvelopeInvalidError(PipelineError):
    """The response body does not match the expected envelope shape."""

    kind = "envelope_invalid"


class RemoteError(PipelineError):
    """The response envelope explicitly reports a failure."""

    kind = "remote_error"


class SchemaValidationFailedError(PipelineError):
    """The output contract was never satisfied within the retry bound."""

    kind = "schema_validation_failed"

    def __init__(self, validation_errors: List[str], attempts: int):
        joined = "; ".join(validation_errors) or "unknown validation error"
        super().__init__(f"Output failed schema validation after {attempts} attempt(s): {joined}")
        self.validation_errors = list(validation_errors)
        self.attempts = attempts

    def to_dict(self) -> Dict[str, Any]:
        return {
            **super().to_dict(),
            "validation_errors": self.validation_errors,
            "attempts": self.attempts,
        }


class ApprovalDeniedError(PipelineError):
    """An interactive approval gate was declined on the terminal."""

    kind = "approval_denied"
