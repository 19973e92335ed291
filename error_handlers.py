# error_handlers.py
import logging
import traceback

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger("dinherin")


def _field_name(loc) -> str:
    # drop the "body"/"query" prefix FastAPI puts in front of the field path
    parts = [str(p) for p in loc if p not in ("body", "query", "path", "header")]
    return ".".join(parts) or "body"


def register_error_handlers(app: FastAPI) -> None:
    """Every error leaves the API as {"success": false, "error": ...}."""

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        if exc.status_code >= 500:
            logger.error("HTTP %s on %s: %s", exc.status_code, request.url.path, exc.detail)
        elif exc.status_code != 404:
            logger.warning("HTTP %s on %s: %s", exc.status_code, request.url.path, exc.detail)

        body = {"success": False}
        if isinstance(exc.detail, dict):
            body.update(exc.detail)
        else:
            body["error"] = exc.detail
        return JSONResponse(body, status_code=exc.status_code, headers=getattr(exc, "headers", None))

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        fields = [{"field": _field_name(e.get("loc", ())), "message": e.get("msg", "")} for e in exc.errors()]
        logger.warning("Validation failed on %s: %s", request.url.path, fields)
        return JSONResponse(
            {"success": False, "error": "Validation failed", "fields": fields},
            status_code=400,
        )

    @app.exception_handler(Exception)
    async def server_error(request: Request, exc: Exception):
        # traceback stays in the logs; the client only sees a generic message
        tb = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        logger.error("Unhandled error on %s:\n%s", request.url.path, tb)
        return JSONResponse({"success": False, "error": "Internal server error"}, status_code=500)
