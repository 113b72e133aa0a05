"""
日志中间件模块
为FastAPI应用记录HTTP请求并分配请求ID
"""

import time
import uuid
from typing import Callable
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from .config import get_logger
from .context import LogContext


# 这些请求头包含凭据，不能写入日志
REDACTED_HEADERS = {'authorization', 'cookie', 'set-cookie'}


def redact_headers(headers) -> dict:
    """返回脱敏后的请求头"""
    return {
        key: ('<redacted>' if key.lower() in REDACTED_HEADERS else value)
        for key, value in headers.items()
    }


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    FastAPI日志中间件
    自动记录HTTP请求和响应信息
    """

    def __init__(self, app, logger_name: str = "uniapply.http"):
        super().__init__(app)
        self.logger = get_logger(logger_name)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get('x-request-id') or str(uuid.uuid4())
        start_time = time.time()

        with LogContext(request_id=request_id):
            self.logger.info(
                "HTTP request started",
                extra={
                    'event': 'http_request_started',
                    'method': request.method,
                    'path': request.url.path,
                    'headers': redact_headers(request.headers),
                    'client_ip': request.client.host if request.client else None
                }
            )

            try:
                response = await call_next(request)
            except Exception as e:
                self.logger.error(
                    "HTTP request failed",
                    extra={
                        'event': 'http_request_failed',
                        'method': request.method,
                        'path': request.url.path,
                        'duration_seconds': round(time.time() - start_time, 4),
                        'error_type': type(e).__name__
                    },
                    exc_info=True
                )
                raise

            self.logger.info(
                "HTTP request completed",
                extra={
                    'event': 'http_request_completed',
                    'method': request.method,
                    'path': request.url.path,
                    'status_code': response.status_code,
                    'duration_seconds': round(time.time() - start_time, 4)
                }
            )

            response.headers['X-Request-ID'] = request_id
            return response
