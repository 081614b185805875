import time
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from taskboard.logs.server_log import api_logger
from taskboard.logs.debug_log import debug_logger


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Writes one access line per request plus the detailed debug trace"""

    async def dispatch(self, request: Request, call_next):
        start_time = time.time()

        method = request.method
        url = str(request.url)
        client_host = request.client.host if request.client else "unknown"

        debug_logger.log_request(request)

        try:
            response = await call_next(request)
        except Exception as e:
            debug_logger.log_exception(f"Ошибка при обработке запроса {method} {url}")
            api_logger.error(f"Error processing request {method} {url}: {str(e)}")
            raise

        process_time = time.time() - start_time

        api_logger.info(
            f"Request: {method} {url} | "
            f"Status: {response.status_code} | "
            f"Client: {client_host} | "
            f"Process Time: {process_time:.3f}s"
        )
        debug_logger.log_response(response, process_time)

        return response
