import asyncio
import logging
import uuid

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from report_engine.api.routes import router
from report_engine.errors import ReportEngineError
from report_engine.settings import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)


def _error_response(exc: ReportEngineError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": {"code": exc.code, "message": exc.message, "error_id": exc.error_id}},
    )


def create_app() -> FastAPI:
    docs_enabled = settings.environment != "production"
    app = FastAPI(
        title="Report Engine",
        description="Ad-hoc report execution and export service",
        version="0.1.0",
        docs_url="/docs" if docs_enabled else None,
        redoc_url="/redoc" if docs_enabled else None,
        openapi_url="/openapi.json" if docs_enabled else None,
    )

    @app.exception_handler(ReportEngineError)
    async def handle_engine_error(_request: Request, exc: ReportEngineError) -> JSONResponse:
        logger.warning(
            "report.handled_error | %s",
            {
                "error_id": exc.error_id,
                "code": exc.code,
                "status_code": exc.status_code,
            },
        )
        return _error_response(exc)

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(_request: Request, exc: RequestValidationError) -> JSONResponse:
        first = exc.errors()[0] if exc.errors() else {}
        location = ".".join(str(part) for part in first.get("loc", ()))
        detail = first.get("msg", "invalid value")
        error = ReportEngineError(
            status_code=400,
            code="invalid_configuration",
            message=f"Invalid request at '{location}': {detail}" if location else detail,
        )
        logger.warning("report.handled_error | %s", {"error_id": error.error_id, "code": error.code, "status_code": 400})
        return _error_response(error)

    @app.exception_handler(Exception)
    async def handle_unexpected_error(_request: Request, exc: Exception) -> JSONResponse:
        error_id = str(uuid.uuid4())
        logger.exception("report.unhandled_error | %s", {"error_id": error_id})
        return JSONResponse(
            status_code=500,
            content={
                "error": {
                    "code": "internal_error",
                    "message": "Unexpected internal error",
                    "error_id": error_id,
                }
            },
        )

    @app.middleware("http")
    async def request_timeout_middleware(request: Request, call_next):  # type: ignore[override]
        try:
            return await asyncio.wait_for(call_next(request), timeout=settings.execution_timeout_seconds + 2)
        except TimeoutError:
            return _error_response(
                ReportEngineError(status_code=504, code="request_timeout", message="Request timed out")
            )

    app.include_router(router)
    return app


app = create_app()
