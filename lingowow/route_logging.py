from __future__ import annotations

import logging
import time
from contextvars import ContextVar

from fastapi.routing import APIRoute
from starlette.requests import Request

from lingowow.config import settings


# "METHOD /path/{param}" of the request being served; read by the slow query log.
current_endpoint: ContextVar[str] = ContextVar('current_endpoint', default='background')

logger = logging.getLogger('lingowow.request')


class EndpointNameRoute(APIRoute):
    """Route that labels the request context and reports slow handlers."""

    def get_route_handler(self):
        handler = super().get_route_handler()
        label = f"{','.join(sorted(self.methods or ()))} {self.path}"

        async def timed_handler(request: Request):
            token = current_endpoint.set(label)
            started = time.perf_counter()
            try:
                response = await handler(request)
            finally:
                current_endpoint.reset(token)
            duration_ms = (time.perf_counter() - started) * 1000.0
            if duration_ms >= settings.metrics_slow_ms:
                logger.info(
                    'request_slow endpoint=%s status_code=%s duration_ms=%.2f',
                    label,
                    response.status_code,
                    duration_ms,
                )
            return response

        return timed_handler
