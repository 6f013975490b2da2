#
# Logs every request with an ID so that the lines of one request can be found
# together. The gatekeeper's own lines are logged without it.
#
import logging
import time
import uuid
from typing import Optional

from starlette.datastructures import MutableHeaders
from starlette.types import ASGIApp, Receive, Scope, Send

from .app_logging import TRACE


class RequestLoggingMiddleware:
    def __init__(self, app: ASGIApp, logger: Optional[logging.Logger] = None):
        self.app = app
        self.logger = logger or logging.getLogger(__name__)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope['type'] != 'http':
            await self.app(scope, receive, send)
            return

        start = time.monotonic()
        request_id = uuid.uuid4().hex
        client = scope.get('client')
        remote = f'{client[0]}:{client[1]}' if client else ''
        url = scope.get('path', '')
        if scope.get('query_string'):
            url += '?' + scope['query_string'].decode('latin-1')

        self.logger.log(TRACE, 'request received',
                        extra={'request': request_id, 'method': scope.get('method'),
                               'url': url, 'remote': remote})
        status = {'code': 0}

        async def send_wrapper(message: dict) -> None:
            if message['type'] == 'http.response.start':
                status['code'] = message['status']
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            self.logger.info('request served',
                             extra={'request': request_id, 'status': status['code'],
                                    'duration-seconds': time.monotonic() - start})


class ResponseHeadersMiddleware:
    """Apply response headers to all responses.

    Prevent UI redress attacks. Kept at the ASGI level so that ``receive``
    reaches the routes unwrapped and a client disconnect stays visible.
    """

    HEADERS = {
        'Content-Security-Policy': "frame-ancestors 'none'",
        'X-Frame-Options': 'DENY',
    }

    def __init__(self, app: ASGIApp):
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope['type'] != 'http':
            await self.app(scope, receive, send)
            return

        async def send_wrapper(message: dict) -> None:
            if message['type'] == 'http.response.start':
                headers = MutableHeaders(scope=message)
                for name, value in self.HEADERS.items():
                    headers[name] = value
            await send(message)

        await self.app(scope, receive, send_wrapper)
