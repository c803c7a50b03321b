"""Render errors as ``{"error": message, "code": code}``."""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from menubill.src.billing.shared.exceptions import BillingError

logger = logging.getLogger(__name__)


async def billing_exception_handler(request: Request, exc: BillingError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.warning(f"[API] {request.method} {request.url.path} -> {exc.status_code} {exc.code}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    if errors:
        location = '.'.join(str(part) for part in errors[0].get('loc', ()) if part != 'body')
        message = f"{location}: {errors[0].get('msg')}" if location else errors[0].get('msg')
    else:
        message = 'Invalid request'
    return JSONResponse(status_code=400, content={'error': message, 'code': 'VALIDATION_ERROR'})


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"[API] Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=exc)
    return JSONResponse(status_code=500, content={'error': 'Internal server error', 'code': 'INTERNAL_ERROR'})


def register_exception(app: FastAPI) -> None:
    """
    全局异常处理

    :param app:
    :return:
    """
    app.add_exception_handler(BillingError, billing_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
