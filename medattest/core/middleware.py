"""
Request tracing for attestation traffic.

Every call gets a request id, logged when it starts and ends and returned
in the ``X-Request-ID`` header, so a disputed attestation step can be
followed from the browser to the server log.
"""
import time
import logging
import re
import uuid
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

# Set up logging
logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"

# Ids forwarded by the front-end proxy are kept only if they look like one
_FORWARDED_ID = re.compile(r"^[A-Za-z0-9-]{8,64}$")

def request_id_for(request: Request) -> str:
    forwarded = request.headers.get(REQUEST_ID_HEADER)
    if forwarded and _FORWARDED_ID.match(forwarded):
        return forwarded
    return str(uuid.uuid4())

class AttestationTracingMiddleware(BaseHTTPMiddleware):
    """
    Tags each request with an id and logs its outcome.

    Only method and path are logged. Bodies and query strings are not: they
    may carry one-time codes or patient names.
    """

    async def dispatch(self, request: Request, call_next):
        request_id = request_id_for(request)
        request.state.request_id = request_id

        client_host = request.client.host if request.client else "unknown"
        logger.info(f"Request {request_id} started: {request.method} {request.url.path} from {client_host}")

        start_time = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                f"Request {request_id} failed: {request.method} {request.url.path} "
                f"- Error: {type(e).__name__} - Duration: {time.perf_counter() - start_time:.4f}s"
            )
            raise

        process_time = time.perf_counter() - start_time
        response.headers[REQUEST_ID_HEADER] = request_id
        response.headers["X-Process-Time"] = f"{process_time:.4f}"

        log = logger.warning if response.status_code >= 500 else logger.info
        log(
            f"Request {request_id} completed: {request.method} {request.url.path} "
            f"- Status: {response.status_code} - Duration: {process_time:.4f}s"
        )
        return response


def setup_middlewares(app):
    """
    Set up all custom middlewares for the application.

    Args:
        app: FastAPI application instance
    """
    app.add_middleware(AttestationTracingMiddleware)
