"""
Tags every request with a correlation ID. The same ID lands in log records,
audit events written during the request and the X-Correlation-Id response
header, so one decision can be traced from the HTTP call to its outbox rows.
"""

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

from ...utils.logger import set_correlation_id, get_logger
from ...utils.idgen import generate_correlation_id

logger = get_logger(__name__)

CORRELATION_HEADER = "X-Correlation-Id"


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Reuse the caller's X-Correlation-Id or mint a COR- id"""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        correlation_id = request.headers.get(CORRELATION_HEADER) or generate_correlation_id()
        set_correlation_id(correlation_id)

        response = await call_next(request)

        response.headers[CORRELATION_HEADER] = correlation_id
        if response.status_code >= 500:
            logger.warning(
                f"{request.method} {request.url.path} -> {response.status_code}",
                extra={"correlation_id": correlation_id}
            )
        return response
