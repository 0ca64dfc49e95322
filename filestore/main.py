import logging

import uvicorn
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from filestore.api.v1.deps import get_bucket_service, get_file_storage, require_api_key
from filestore.api.v1.routers.files import router as files_router
from filestore.common.config import get_settings
from filestore.common.logging import setup_logging
from filestore.infra.observability.metrics import metrics_app
from filestore.infra.observability.middleware import MetricsMiddleware
from filestore.services.bucket_service import BucketService
from filestore.services.errors import FileStorageError

ERROR_CODE_BY_STATUS = {
    400: "bad_request",
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    405: "method_not_allowed",
    409: "conflict",
    413: "payload_too_large",
    415: "unsupported_media_type",
    416: "range_not_satisfiable",
    429: "too_many_requests",
    500: "internal_error",
    502: "bad_gateway",
    503: "service_unavailable",
}


def _normalize_detail(detail):
    if isinstance(detail, dict):
        maybe_code = detail.get("error_code")
        cleaned = {k: v for k, v in detail.items() if k != "error_code"}
        if len(cleaned) == 1 and "message" in cleaned:
            cleaned = cleaned["message"]
        if not cleaned:
            cleaned = None
        return cleaned, maybe_code if isinstance(maybe_code, str) else None
    return detail, None


def _resolve_error_code(status_code: int, override: str | None = None) -> str:
    if override:
        return override
    if status_code == 422:
        return "validation_error"
    return ERROR_CODE_BY_STATUS.get(status_code, "unknown_error")


def create_app() -> FastAPI:
    settings = get_settings()
    setup_logging()
    app = FastAPI(
        title="Filestore Service",
        version="v1.0",
        description="File storage on S3-compatible object stores",
    )

    # Optional CORS
    if settings.CORS_ENABLED:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.CORS_ORIGINS or ["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    # Routers
    app.include_router(
        files_router,
        prefix="/api/v1",
        tags=["files"],
        dependencies=[Depends(require_api_key)],
    )

    # Metrics
    if settings.ENABLE_METRICS:
        app.add_middleware(MetricsMiddleware)
        app.mount("/metrics", metrics_app)

    @app.on_event("startup")
    def on_startup() -> None:
        startup_logger = logging.getLogger("filestore.startup")
        storage = get_file_storage()
        startup_logger.info(
            "File storage at %s. [event=storage_configured]", storage.uri
        )
        if not settings.S3_AUTO_CREATE_BUCKET:
            return
        try:
            created = get_bucket_service().ensure_bucket()
        except FileStorageError as exc:
            startup_logger.error(
                "Could not verify or create the bucket, aborting startup. Check "
                "S3_ENDPOINT_URL, credentials and S3_REGION."
                " [event=ensure_bucket_failed] (bucket=%s, error=%s)",
                storage.config.bucket,
                exc,
            )
            raise
        startup_logger.info(
            "Bucket ready. [event=ensure_bucket_succeeded] (bucket=%s, created=%s)",
            storage.config.bucket,
            created,
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        logger = logging.getLogger("http")
        normalized_detail, code_override = _normalize_detail(exc.detail)
        logger.log(
            logging.WARNING if exc.status_code < 500 else logging.ERROR,
            "http_exception status=%s detail=%s method=%s path=%s request_id=%s",
            exc.status_code,
            normalized_detail,
            request.method,
            request.url.path,
            request.headers.get("X-Request-Id"),
            extra={
                "extra": {
                    "status": exc.status_code,
                    "detail": normalized_detail,
                    "method": request.method,
                    "route": request.url.path,
                    "request_id": request.headers.get("X-Request-Id"),
                }
            },
        )
        return JSONResponse(
            status_code=exc.status_code,
            media_type="application/problem+json",
            content={
                "type": "about:blank",
                "title": "HTTP Error",
                "status": exc.status_code,
                "detail": normalized_detail,
                "error_code": _resolve_error_code(exc.status_code, code_override),
                "instance": str(request.url),
                "request_id": request.headers.get("X-Request-Id"),
            },
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_exception_handler(
        request: Request, exc: RequestValidationError
    ):
        return JSONResponse(
            status_code=422,
            media_type="application/problem+json",
            content={
                "type": "about:blank",
                "title": "Validation Error",
                "status": 422,
                "detail": jsonable_encoder(exc.errors()),
                "error_code": _resolve_error_code(422),
                "instance": str(request.url),
                "request_id": request.headers.get("X-Request-Id"),
            },
        )

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    @app.get("/ready")
    def ready(buckets: BucketService = Depends(get_bucket_service)):
        try:
            if not buckets.exists():
                return {
                    "status": "not_ready",
                    "detail": {"bucket": f"{buckets.bucket} does not exist"},
                }
        except FileStorageError as exc:
            return {"status": "not_ready", "detail": {"store": str(exc)}}
        return {"status": "ready"}

    return app


app = create_app()

if __name__ == "__main__":
    uvicorn.run("filestore.main:app", host="0.0.0.0", port=8000, reload=True)
