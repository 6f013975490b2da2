"""
Decides whether a request is authenticated.

:meth:`Gatekeeper.check_auth` runs the ordered checks below and returns one
of three outcomes. First match wins.

1. A session cookie is present: validate it at the user-info endpoint.
2. The cookie could not be read: fail.
3. The IdP sent ``error`` back: fail with the provider's message.
4. There is no ``code``: redirect the browser to the IdP.
5. Exchange ``code`` for a token, validate it and set the cookie.

The gatekeeper does not know about the web framework. It gets the cookies
through a :class:`SessionCookies` capability and the query parameters as a
mapping. A :class:`Redirected` outcome carries the URL and the HTTP layer
writes the 302.
"""
import enum
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Protocol, Union

from .app_logging import TRACE
from .config import COOKIE_NAME_TOKEN
from .exceptions import AuthenticationError, CallbackError, CookieReadError, \
    RequestCancelled
from .idp import OidcIdpClient

module_logger = logging.getLogger(__name__)


class Stage(enum.Enum):
    """Where the flow was when it failed."""

    CHECK_COOKIE = 'check_cookie'
    VALIDATING = 'validating'
    EXCHANGING = 'exchanging'


@dataclass(frozen=True)
class Authenticated:
    token: str
    userinfo: Dict[str, Any] = field(default_factory=dict)
    cookie_set: bool = False
    """True when the token came from a code exchange and the cookie was written."""


@dataclass(frozen=True)
class Redirected:
    """The caller must send a 302 to ``url`` and stop processing."""

    url: str


@dataclass(frozen=True)
class Failed:
    error: AuthenticationError
    stage: Stage


AuthOutcome = Union[Authenticated, Redirected, Failed]


class SessionCookies(Protocol):
    """Read and write access to the request's cookies."""

    def read(self, name: str) -> Optional[str]:
        """Value of cookie ``name``, None if missing.

        Raises :class:`.CookieReadError` if the cookie is there but unusable.
        """

    def write(self, name: str, value: str) -> None:
        """Set cookie ``name`` on the response."""


class Gatekeeper(object):
    """
    Runs the authentication flow for one identity provider.

    Parameters
    ----------
    idp : :class:`.OidcIdpClient`
    cookie_name : str
    reauth_on_invalid_cookie : bool
        When the cookie token is rejected, go on as if there were no cookie
        (which ends in a redirect to the IdP) instead of failing.
    logger : :class:`logging.Logger`

    """

    def __init__(self, idp: OidcIdpClient, cookie_name: str = COOKIE_NAME_TOKEN,
                 reauth_on_invalid_cookie: bool = False,
                 logger: Optional[logging.Logger] = None) -> None:
        self.idp = idp
        self.cookie_name = cookie_name
        self.reauth_on_invalid_cookie = reauth_on_invalid_cookie
        self.logger = logger or module_logger

    def validate_token(self, token: str) -> Dict[str, Any]:
        """User-info claims for ``token``; raises :class:`.InvalidToken`."""
        return self.idp.user_info(token)

    def check_auth(self, cookies: SessionCookies, query: Mapping[str, str],
                   cancel: Optional[threading.Event] = None) -> AuthOutcome:
        """
        Authenticate one request.

        Parameters
        ----------
        cookies : :class:`SessionCookies`
        query : Mapping
            Query parameters of the request.
        cancel : :class:`threading.Event`
            Tied to the lifetime of the request. Checked before each call to
            the IdP and before the cookie is written. Once set, the flow ends
            with :class:`.RequestCancelled`.

        Returns
        -------
        :class:`Authenticated`, :class:`Redirected` or :class:`Failed`

        """
        logger = self.logger.getChild('check_auth')
        logger.log(TRACE, 'check_auth called...')
        stage = Stage.CHECK_COOKIE

        try:
            try:
                token = cookies.read(self.cookie_name)
            except CookieReadError as exc:
                logger.info("Unexpected error reading %s cookie: %s", self.cookie_name, exc)
                return Failed(exc, stage)

            if token is not None:
                logger.log(TRACE, "token found in cookie '%s'", self.cookie_name)
                stage = Stage.VALIDATING
                self._check_cancelled(cancel)
                try:
                    userinfo = self.validate_token(token)
                    return Authenticated(token, userinfo)
                except AuthenticationError:
                    if not self.reauth_on_invalid_cookie:
                        raise
                    logger.info('Token in cookie was rejected, starting a new login')
                stage = Stage.CHECK_COOKIE

            code = query.get('code') or ''
            if not code:
                error = query.get('error') or ''
                if error:
                    description = query.get('error_description') or ''
                    logger.info('Error occurred on auth callback: %s %s', error, description)
                    return Failed(CallbackError(error, description), stage)

                url = self.idp.login_url
                logger.debug('Redirecting to auth endpoint...')
                return Redirected(url)

            logger.log(TRACE, 'Code found in request')
            stage = Stage.EXCHANGING
            self._check_cancelled(cancel)
            tokens = self.idp.exchange_code(code)

            stage = Stage.VALIDATING
            self._check_cancelled(cancel)
            userinfo = self.validate_token(tokens.access_token)

            self._check_cancelled(cancel)
            cookies.write(self.cookie_name, tokens.access_token)
            logger.debug('Session cookie set')
            return Authenticated(tokens.access_token, userinfo, cookie_set=True)

        except AuthenticationError as exc:
            logger.info('Authentication failed while %s: %s', stage.value, exc)
            return Failed(exc, stage)

    def _check_cancelled(self, cancel: Optional[threading.Event]) -> None:
        if cancel is not None and cancel.is_set():
            raise RequestCancelled('Request cancelled before it could finish')
