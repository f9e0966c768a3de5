"""Translate every failure into the uniform error envelope."""

import logging
import traceback

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from gfw_gateway.forest.errors import ErrorCode, GatewayError, error_envelope

logger = logging.getLogger(__name__)


def register_error_handlers(app: FastAPI, debug: bool = False) -> None:
    """Install the exception handlers on ``app``.

    Args:
        app: FastAPI application instance
        debug: Development mode; error bodies include stack traces and
            upstream context
    """

    async def gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
        log = logger.error if exc.status >= 500 else logger.warning
        log(f"{request.method} {request.url.path} failed: {exc.code.value} ({exc.status}) {exc.message}")
        if exc.context:
            logger.debug(f"Upstream context: {exc.context}")
        headers = {"Retry-After": "60"} if exc.code == ErrorCode.RATE_LIMIT else None
        return JSONResponse(status_code=exc.status, content=exc.to_response(debug=debug), headers=headers)

    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        violations = [
            {"field": ".".join(str(part) for part in err.get("loc", ())[1:]), "message": err.get("msg", "")}
            for err in exc.errors()
        ]
        logger.warning(f"{request.method} {request.url.path} rejected: {violations}")
        return JSONResponse(
            status_code=400,
            content=error_envelope("Invalid request parameters", ErrorCode.VALIDATION_ERROR.value, 400, violations),
        )

    async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        code = ErrorCode.NOT_FOUND if exc.status_code == 404 else ErrorCode.HTTP_ERROR
        return JSONResponse(
            status_code=exc.status_code,
            content=error_envelope(str(exc.detail), code.value, exc.status_code),
            headers=getattr(exc, "headers", None),
        )

    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error(f"Unexpected error on {request.method} {request.url.path}: {exc}")
        logger.error(traceback.format_exc())
        body = error_envelope("Internal server error", ErrorCode.INTERNAL_ERROR.value, 500)
        if debug:
            body["error"]["stack"] = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        return JSONResponse(status_code=500, content=body)

    app.add_exception_handler(GatewayError, gateway_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
