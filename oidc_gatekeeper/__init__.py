"""OIDC relying party that guards an HTTP path behind an identity provider.

This module holds the request-level glue between FastAPI and the
:class:`.Gatekeeper`.
"""
import asyncio
import threading
from logging import getLogger
from typing import List, Optional

from fastapi import Request, Response
from starlette.concurrency import run_in_threadpool
from starlette.requests import cookie_parser

from .exceptions import AuthenticationError, CookieReadError
from .gatekeeper import Authenticated, Failed, Gatekeeper, Redirected

logger = getLogger(__name__)


class RedirectRequired(Exception):
    """Raised from a dependency to answer with a 302 to ``url``."""

    def __init__(self, url: str) -> None:
        self.url = url
        super().__init__(url)


class RequestCookies(object):
    """:class:`.SessionCookies` over a Starlette request/response pair."""

    def __init__(self, request: Request, response: Response,
                 secure: bool = False, httponly: bool = False) -> None:
        self.request = request
        self.response = response
        self.secure = secure
        self.httponly = httponly

    def read(self, name: str) -> Optional[str]:
        values: List[str] = []
        for header in self.request.headers.getlist('cookie'):
            for chunk in header.split(';'):
                value = cookie_parser(chunk).get(name)
                if value is not None:
                    values.append(value)
        # Browsers send one cookie per (name, domain, path); two different
        # values for ours means we cannot tell which session is meant.
        if len(set(values)) > 1:
            raise CookieReadError(f"Conflicting values for cookie '{name}'")
        return values[0] if values else None

    def write(self, name: str, value: str) -> None:
        self.response.set_cookie(name, value, path='/', secure=self.secure,
                                 httponly=self.httponly)


DISCONNECT_POLL_SECONDS = 0.05


async def watch_request(request: Request, cancel: threading.Event,
                        shutdown: Optional[threading.Event] = None,
                        interval: float = DISCONNECT_POLL_SECONDS) -> None:
    """Set ``cancel`` once the client goes away or the server shuts down."""
    while not cancel.is_set():
        if (shutdown is not None and shutdown.is_set()) or await request.is_disconnected():
            logger.debug('Request ended early, cancelling authentication')
            cancel.set()
            return
        await asyncio.sleep(interval)


async def get_current_auth(request: Request, response: Response) -> Authenticated:
    """Dependency for protected routes.

    The gatekeeper runs on a worker thread with a cancel event that lives as
    long as this request. The event is set when the client disconnects or
    the app's ``shutdown`` event is set.

    Raises :class:`RedirectRequired` or :class:`.AuthenticationError`; the app
    registers handlers for both.
    """
    gatekeeper: Gatekeeper = request.app.extra['gatekeeper']
    config = request.app.extra['config']
    shutdown: Optional[threading.Event] = request.app.extra.get('shutdown')
    cookies = RequestCookies(request, response, secure=config.cookie_secure,
                             httponly=config.cookie_httponly)

    cancel = threading.Event()
    if (shutdown is not None and shutdown.is_set()) or await request.is_disconnected():
        cancel.set()
    watcher = asyncio.create_task(watch_request(request, cancel, shutdown))
    try:
        outcome = await run_in_threadpool(gatekeeper.check_auth, cookies,
                                          request.query_params, cancel)
    finally:
        watcher.cancel()

    if isinstance(outcome, Redirected):
        logger.info('Redirect was performed, exiting handler...')
        raise RedirectRequired(outcome.url)
    if isinstance(outcome, Failed):
        raise outcome.error
    return outcome


__all__ = ['AuthenticationError', 'RedirectRequired', 'RequestCookies',
           'get_current_auth', 'watch_request']
