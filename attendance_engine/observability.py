from __future__ import annotations

import logging
import time
from contextvars import ContextVar

from fastapi import Request
from fastapi.routing import APIRoute

from attendance_engine.config import settings


current_endpoint: ContextVar[str] = ContextVar('current_endpoint', default='background')

_request_logger = logging.getLogger('attendance_engine.request')


class EndpointNameRoute(APIRoute):
    """Labels every request with its route template so slow-query logs can name it."""

    def get_route_handler(self):
        original_handler = super().get_route_handler()

        async def labelled_handler(request: Request):
            token = current_endpoint.set(f'{request.method} {self.path}')
            try:
                return await original_handler(request)
            finally:
                current_endpoint.reset(token)

        return labelled_handler


async def slow_request_logger(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    duration_ms = (time.perf_counter() - started) * 1000.0
    if duration_ms >= settings.metrics_slow_ms:
        _request_logger.info(
            'request_slow path=%s method=%s status_code=%s duration_ms=%.2f',
            request.url.path,
            request.method,
            response.status_code,
            duration_ms,
        )
    return response
