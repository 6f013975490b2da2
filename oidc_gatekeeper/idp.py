"""Talks to the OIDC identity provider.

:class:`OidcIdpClient` wraps one :class:`requests.Session` and knows the
provider's endpoints. It is the token validator and the authorization code
exchanger of the gatekeeper. It keeps no per-request state, so one instance
serves every request thread.
"""
import json
import logging
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import requests
from pydantic import BaseModel, ConfigDict

from .app_logging import TRACE
from .config import ProviderConfig
from .exceptions import ConfigurationError, ExchangeError, InvalidToken

module_logger = logging.getLogger(__name__)


class TokenResponse(BaseModel):
    """Successful reply of the token endpoint."""

    model_config = ConfigDict(extra='allow', frozen=True)

    access_token: str
    token_type: str = 'Bearer'
    expires_in: Optional[int] = None
    refresh_token: Optional[str] = None
    id_token: Optional[str] = None
    scope: Optional[str] = None


def discover(config: ProviderConfig, session: Optional[requests.Session] = None,
             logger: Optional[logging.Logger] = None) -> ProviderConfig:
    """
    Fill the missing endpoints of ``config`` from the discovery document.

    Returns ``config`` unchanged when all endpoints are already set.

    Raises
    ------
    :class:`.ConfigurationError`
        If the document cannot be fetched or lacks a needed endpoint.

    """
    logger = logger or module_logger
    if config.has_endpoints:
        return config
    own_session = session is None
    if session is None:
        session = requests.Session()
    url = config.discovery_url
    logger.debug('Fetching discovery document %s', url)
    try:
        response = session.get(url, timeout=config.http_timeout)
        response.raise_for_status()
        document: Dict[str, Any] = response.json()
    except (requests.exceptions.RequestException, ValueError) as exc:
        raise ConfigurationError(f'Could not load discovery document {url}: {exc}') from exc
    finally:
        if own_session:
            session.close()
    if not isinstance(document, dict):
        raise ConfigurationError(f'Invalid discovery document at {url}')

    update = {}
    for key in ('authorization_endpoint', 'token_endpoint', 'userinfo_endpoint'):
        if getattr(config, key):
            continue
        value = document.get(key)
        if not value:
            raise ConfigurationError(f'Discovery document lacks {key}')
        update[key] = str(value)
    logger.info('Discovered endpoints for %s', config.issuer, extra=update)
    return config.model_copy(update=update)


class OidcIdpClient(object):
    """
    HTTP client for one identity provider.

    Parameters
    ----------
    config : :class:`.ProviderConfig`
        Must carry all three endpoints; see :func:`discover`.
    session : :class:`requests.Session`
        Created when not given. No retries are mounted on it.
    logger : :class:`logging.Logger`

    """

    def __init__(self, config: ProviderConfig,
                 session: Optional[requests.Session] = None,
                 logger: Optional[logging.Logger] = None) -> None:
        if not config.has_endpoints:
            raise ConfigurationError('Provider endpoints are not configured')
        self.config = config
        self.logger = logger or module_logger
        if session is None:
            session = requests.Session()
            adapter = requests.adapters.HTTPAdapter(max_retries=0)
            session.mount('http://', adapter)
            session.mount('https://', adapter)
        self._session = session

    def authorization_url(self, state: str = '') -> str:
        """URL of the provider's login page for this client."""
        params = {
            'client_id': self.config.client_id,
            'redirect_uri': self.config.redirect_uri,
            'response_type': 'code',
            'scope': ' '.join(self.config.scopes),
        }
        if state:
            params['state'] = state
        endpoint = str(self.config.authorization_endpoint)
        separator = '&' if '?' in endpoint else '?'
        return f'{endpoint}{separator}{urlencode(params)}'

    @property
    def login_url(self) -> str:
        return self.authorization_url()

    def exchange_code(self, code: str) -> TokenResponse:
        """
        Trade an authorization code for tokens.

        Parameters
        ----------
        code : str
            The ``code`` query parameter of the callback.

        Returns
        -------
        :class:`.TokenResponse`

        Raises
        ------
        :class:`.ExchangeError`
            On a transport failure, a non-2xx reply or a reply without an
            access token.

        """
        logger = self.logger.getChild('exchange_code')
        data = {
            'grant_type': 'authorization_code',
            'code': code,
            'redirect_uri': self.config.redirect_uri,
        }
        auth = None
        if self.config.client_secret:
            auth = (self.config.client_id, self.config.client_secret)
        else:
            data['client_id'] = self.config.client_id

        try:
            response = self._session.post(str(self.config.token_endpoint), data=data,
                                          auth=auth,
                                          headers={'Accept': 'application/json'},
                                          timeout=self.config.http_timeout)
        except requests.exceptions.RequestException as exc:
            logger.info('Token endpoint unreachable: %s', exc)
            raise ExchangeError(f'Unexpected error exchanging code for token: {exc}') from exc

        try:
            body: Any = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}

        if not response.ok:
            error = body.get('error')
            description = body.get('error_description')
            logger.info('Token endpoint responded with status %i: %s',
                        response.status_code, error)
            raise ExchangeError(
                f'Token exchange failed (status={response.status_code}, error={error})',
                status=response.status_code, error=error, description=description)

        try:
            token = TokenResponse.model_validate(body)
        except ValueError as exc:
            raise ExchangeError('Token endpoint returned no access token',
                                status=response.status_code) from exc
        logger.log(TRACE, 'Token received from code exchange')
        return token

    def user_info(self, token: str) -> Dict[str, Any]:
        """
        Ask the user-info endpoint about ``token``.

        This doubles as the liveness check of the token. Transport failures
        are reported the same way as a rejected token.

        Returns
        -------
        dict
            The claims about the token's subject.

        Raises
        ------
        :class:`.InvalidToken`

        """
        logger = self.logger.getChild('validate_token')
        logger.log(TRACE, 'validate_token called...')
        try:
            response = self._session.get(str(self.config.userinfo_endpoint),
                                         headers={'Authorization': f'Bearer {token}',
                                                  'Accept': 'application/json'},
                                         timeout=self.config.http_timeout)
        except requests.exceptions.RequestException as exc:
            logger.info('User-info endpoint unreachable: %s', exc)
            raise InvalidToken(f'Could not validate token: {exc}') from exc

        if not response.ok:
            logger.debug('User-info responded with status %i', response.status_code)
            raise InvalidToken(f'Token rejected by identity provider (status={response.status_code})')
        try:
            claims = response.json()
        except ValueError as exc:
            raise InvalidToken('User-info response could not be decoded') from exc
        if not isinstance(claims, dict):
            raise InvalidToken('User-info response is not an object')
        logger.log(TRACE, 'User-info claims: %s', json.dumps(claims))
        return claims

    def close(self) -> None:
        self._session.close()
