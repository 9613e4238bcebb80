"""
Response envelope and exception handlers

Every response body is {"success": bool, "message": str, "result"?: any}.
"""
from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from pymongo.errors import DuplicateKeyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from logger import log_error

SERVER_ERROR = "伺服器錯誤"


def ok(result=None, message: str = "") -> dict:
    body = {"success": True, "message": message}
    if result is not None:
        body["result"] = result
    return body


def fail(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "message": message})


def first_error_message(errors) -> str:
    """Message of the first failing field, without pydantic's 'Value error, ' prefix."""
    if not errors:
        return "內容格式錯誤"
    err = errors[0]
    if err.get("type") == "json_invalid":
        return "內容格式錯誤"
    ctx_error = (err.get("ctx") or {}).get("error")
    if isinstance(ctx_error, ValueError) and str(ctx_error):
        return str(ctx_error)
    return err.get("msg", "內容格式錯誤")


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    message = exc.detail
    if exc.status_code == 404 and message == "Not Found":
        message = "找不到內容"
    return fail(exc.status_code, jsonable_encoder(message))


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return fail(400, first_error_message(exc.errors()))


async def model_validation_handler(request: Request, exc: ValidationError):
    return fail(400, first_error_message(exc.errors()))


async def duplicate_key_handler(request: Request, exc: DuplicateKeyError):
    details = exc.details or {}
    key = details.get("keyPattern") or details.get("keyValue") or {}
    if "email" in key:
        return fail(400, "信箱已存在")
    return fail(400, "帳號已存在")


async def unhandled_exception_handler(request: Request, exc: Exception):
    log_error(f"{request.method} {request.url.path} failed", exc)
    return fail(500, SERVER_ERROR)


def register_exception_handlers(app):
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(ValidationError, model_validation_handler)
    app.add_exception_handler(DuplicateKeyError, duplicate_key_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
