"""
请求/响应日志中间件
记录HTTP请求的状态码与耗时；查询参数中的凭据会被脱敏
"""
import time

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from core.logging_config import get_logger


logger = get_logger(__name__)


class LoggingMiddleware(BaseHTTPMiddleware):
    """按状态码分级记录访问日志"""

    SKIP_PATHS = {"/health", "/docs", "/redoc", "/openapi.json"}

    SENSITIVE_FIELDS = {"token", "access_token", "api_key", "secret"}

    async def dispatch(self, request: Request, call_next):
        if request.url.path in self.SKIP_PATHS:
            return await call_next(request)

        start_time = time.time()
        request_info = {
            "method": request.method,
            "path": request.url.path,
            "query_params": self._sanitize(dict(request.query_params)),
        }

        try:
            response = await call_next(request)
        except Exception as exc:
            logger.error(
                "request_failed",
                duration=time.time() - start_time,
                error=str(exc),
                error_type=type(exc).__name__,
                **request_info,
                exc_info=True,
            )
            raise

        duration = time.time() - start_time
        status_code = response.status_code
        if status_code < 400:
            logger.info("request_completed", status_code=status_code, duration=duration, **request_info)
        elif status_code < 500:
            logger.warning("request_client_error", status_code=status_code, duration=duration, **request_info)
        else:
            logger.error("request_server_error", status_code=status_code, duration=duration, **request_info)

        response.headers["X-Process-Time"] = f"{duration:.3f}"
        return response

    def _sanitize(self, params: dict) -> dict:
        return {k: ("***" if k.lower() in self.SENSITIVE_FIELDS else v) for k, v in params.items()}
