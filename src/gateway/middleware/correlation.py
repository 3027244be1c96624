"""Per-request correlation IDs.

Takes ``X-Correlation-ID`` from the request or generates one, binds it for
the request's context and echoes it on the response. Webhook handler tasks
created during the request inherit the ID even after the response is sent.
"""

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from enrollment.utils.logging import correlation_scope

CORRELATION_ID_HEADER = "X-Correlation-ID"


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        with correlation_scope(request.headers.get(CORRELATION_ID_HEADER)) as correlation_id:
            response = await call_next(request)
        response.headers[CORRELATION_ID_HEADER] = correlation_id
        return response
