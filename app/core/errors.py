import logging
import uuid

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from app.core.exceptions import SokofitiException

logger = logging.getLogger("app.errors")


def register_error_handlers(app):
    @app.exception_handler(SokofitiException)
    async def domain_exception(request: Request, exc: SokofitiException):
        if exc.status_code >= 500:
            logger.error("Request failed code=%s path=%s: %s", exc.code, request.url.path, exc.message)
        else:
            logger.info("Request rejected code=%s path=%s: %s", exc.code, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def request_validation(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        fields = [".".join(str(part) for part in err.get("loc", ())[1:]) for err in errors]
        missing = [f for f, err in zip(fields, errors) if err.get("type") == "missing"]
        if missing:
            message = "Missing required fields: " + ", ".join(missing)
        else:
            message = "Invalid request: " + "; ".join(str(err.get("msg")) for err in errors)
        return JSONResponse(
            status_code=422,
            content={
                "success": False,
                "message": message,
                "code": "VAL000",
                "details": {"fields": fields},
            },
        )

    @app.exception_handler(Exception)
    async def unhandled_exception(request: Request, exc: Exception):  # noqa: BLE001
        correlation_id = uuid.uuid4().hex
        logger.exception("Unhandled error cid=%s path=%s method=%s", correlation_id, request.url.path, request.method)
        return JSONResponse(
            status_code=500,
            content={"success": False, "message": "Internal server error", "code": "SYS500", "cid": correlation_id},
        )

    return app
