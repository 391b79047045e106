"""
Response hardening and request logging.
"""
import time
import uuid
import logging
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

logger = logging.getLogger(__name__)

SLOW_REQUEST_SECONDS = 5.0

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Cache-Control": "no-store",
}

MUTATING_METHODS = ("POST", "PATCH", "PUT", "DELETE")


class SecurityMiddleware(BaseHTTPMiddleware):
    """
    Tags every request with an id, adds the security headers and logs
    changes to campaigns so the audit log shows who touched what.
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12]
        client_ip = request.headers.get("X-Real-IP") or (request.client.host if request.client else "unknown")
        started = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception:
            logger.exception(f"[{request_id}] {request.method} {request.url.path} from {client_ip} raised")
            raise

        elapsed = time.perf_counter() - started
        for name, value in SECURITY_HEADERS.items():
            response.headers[name] = value
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = f"{elapsed:.4f}"

        path = request.url.path
        if request.method in MUTATING_METHODS and "/campaigns" in path:
            logger.info(f"[{request_id}] {request.method} {path} -> {response.status_code} from {client_ip}")

        # generation batches call the LLM for every recipient
        if elapsed > SLOW_REQUEST_SECONDS and not path.endswith("/generate"):
            logger.warning(f"[{request_id}] slow request {request.method} {path} took {elapsed:.2f}s")

        return response
