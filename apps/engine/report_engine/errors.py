from __future__ import annotations

import uuid


class ReportEngineError(Exception):
    def __init__(self, *, status_code: int, code: str, message: str, error_id: str | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message
        self.error_id = error_id or str(uuid.uuid4())


class ConfigurationError(ReportEngineError):
    """The configuration references something the field registry does not allow."""

    def __init__(self, *, code: str, message: str, error_id: str | None = None) -> None:
        super().__init__(status_code=400, code=code, message=message, error_id=error_id)


class RetrievalError(ReportEngineError):
    """Raised by retrieval adapters; the orchestrator propagates it unchanged."""

    def __init__(
        self,
        *,
        message: str,
        code: str = "retrieval_failed",
        status_code: int = 502,
        error_id: str | None = None,
    ) -> None:
        super().__init__(status_code=status_code, code=code, message=message, error_id=error_id)


class ExecutionError(ReportEngineError):
    def __init__(self, *, message: str, code: str = "transform_failed", error_id: str | None = None) -> None:
        super().__init__(status_code=500, code=code, message=message, error_id=error_id)


class ExecutionCancelledError(ReportEngineError):
    def __init__(self, *, stage: str, error_id: str | None = None) -> None:
        super().__init__(
            status_code=499,
            code="execution_cancelled",
            message=f"Report execution cancelled before {stage}",
            error_id=error_id,
        )
        self.stage = stage


class ExportError(ReportEngineError):
    def __init__(self, *, code: str, message: str, error_id: str | None = None) -> None:
        super().__init__(status_code=400, code=code, message=message, error_id=error_id)
