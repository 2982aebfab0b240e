from __future__ import annotations

from typing import Any, Dict, Optional


class AssistantError(Exception):
    code = "assistant_error"

    def __init__(self, message: str, detail: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail or {}

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.detail:
            payload["detail"] = self.detail
        return payload


class ConfigurationError(AssistantError):
    """No credential configured, or settings failed validation."""
    code = "configuration_error"


# -------------------------
# Parser-level failures (abort the whole request)
# -------------------------
class PipelineError(AssistantError):
    code = "pipeline_error"


class EmptyPrompt(PipelineError):
    code = "empty_prompt"


class InvalidPriorContext(PipelineError):
    code = "invalid_prior_context"


class ParseFailure(PipelineError):
    code = "parse_failure"


class SchemaViolation(ParseFailure):
    code = "schema_violation"


class CompletionTimeout(ParseFailure):
    code = "timeout"


# -------------------------
# Event-management system failures (local to one intent)
# -------------------------
class EventSystemError(AssistantError):
    code = "execution_failure"

    def __init__(self, message: str,
                 detail: Optional[Dict[str, Any]] = None,
                 status_code: Optional[int] = None):
        super().__init__(message, detail)
        self.status_code = status_code


class EventNotFound(EventSystemError):
    code = "not_found"


class PermissionDenied(EventSystemError):
    code = "permission_denied"


class EventSystemUnavailable(EventSystemError):
    code = "unreachable"


class EventSystemTimeout(EventSystemError):
    code = "timeout"
