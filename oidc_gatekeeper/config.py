"""Configuration for the gatekeeper, read from the process environment.

Everything is read once by :func:`load_config` at startup and handed to
:func:`oidc_gatekeeper.main.create_app`. The models are frozen so the same
instance can be shared by every request thread.

To load a local env file in a shell:
``export $(grep -v '^#' config.env | xargs)``
"""
import os
from typing import Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, field_validator

from .exceptions import ConfigurationError

DEFAULT_PORT = 8080
DEFAULT_SCOPES = ('openid', 'profile', 'email')
DEFAULT_HTTP_TIMEOUT = 5.0
DEFAULT_LOG_LEVEL = 'info'
COOKIE_NAME_TOKEN = 'auth-token'

TRUTHY = ('1', 'true', 'yes', 'on')
FALSY = ('0', 'false', 'no', 'off')


class ProviderConfig(BaseModel):
    """How to reach the identity provider and who we are to it."""

    model_config = ConfigDict(frozen=True)

    issuer: str
    """Issuer URL, e.g. ``https://auth.example.org/realms/demo``"""

    client_id: str
    client_secret: str = ''
    """Empty for a public client."""

    redirect_uri: str
    """Public URL the IdP sends the browser back to. It must be the protected path."""

    scopes: Tuple[str, ...] = DEFAULT_SCOPES

    authorization_endpoint: Optional[str] = None
    token_endpoint: Optional[str] = None
    userinfo_endpoint: Optional[str] = None
    """Endpoints left unset are filled in from the discovery document."""

    http_timeout: float = DEFAULT_HTTP_TIMEOUT
    """Deadline in seconds for every outbound call to the IdP."""

    @field_validator('http_timeout')
    @classmethod
    def _positive_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError('http_timeout must be positive')
        return value

    @property
    def discovery_url(self) -> str:
        return self.issuer.rstrip('/') + '/.well-known/openid-configuration'

    @property
    def has_endpoints(self) -> bool:
        return bool(self.authorization_endpoint and self.token_endpoint
                    and self.userinfo_endpoint)


class GatekeeperConfig(BaseModel):
    """Application settings around the provider configuration."""

    model_config = ConfigDict(frozen=True)

    provider: ProviderConfig

    cookie_name: str = COOKIE_NAME_TOKEN
    cookie_secure: bool = False
    cookie_httponly: bool = False

    reauth_on_invalid_cookie: bool = False
    """Send the browser back to the IdP when the cookie token is rejected,
    instead of answering 401."""

    host: str = '127.0.0.1'
    port: int = DEFAULT_PORT
    log_level: str = DEFAULT_LOG_LEVEL
    log_pretty: bool = False


def _env_bool(env: Mapping[str, str], key: str, default: bool = False) -> bool:
    value = (env.get(key, '') or '').strip().lower()
    if value in TRUTHY:
        return True
    if value in FALSY:
        return False
    return default


def _env_str(env: Mapping[str, str], key: str) -> Optional[str]:
    return (env.get(key, '') or '').strip() or None


def load_config(env: Optional[Mapping[str, str]] = None) -> GatekeeperConfig:
    """
    Build the configuration from environment variables.

    Parameters
    ----------
    env : Mapping
        Defaults to :data:`os.environ`.

    Raises
    ------
    :class:`.ConfigurationError`
        If ``ISSUER`` or ``CLIENT_ID`` is missing or a value does not parse.

    """
    if env is None:
        env = os.environ

    issuer = _env_str(env, 'ISSUER')
    if not issuer:
        raise ConfigurationError("ENV 'ISSUER' empty or not set")
    client_id = _env_str(env, 'CLIENT_ID')
    if not client_id:
        raise ConfigurationError("ENV 'CLIENT_ID' empty or not set")

    try:
        port = int(_env_str(env, 'PORT') or DEFAULT_PORT)
        http_timeout = float(_env_str(env, 'HTTP_TIMEOUT') or DEFAULT_HTTP_TIMEOUT)
    except ValueError as exc:
        raise ConfigurationError(f'Bad numeric setting: {exc}') from exc

    scopes = tuple((_env_str(env, 'SCOPES') or '').split()) or DEFAULT_SCOPES
    redirect_uri = _env_str(env, 'REDIRECT_URI') or f'http://localhost:{port}/'

    try:
        provider = ProviderConfig(
            issuer=issuer,
            client_id=client_id,
            client_secret=_env_str(env, 'CLIENT_SECRET') or '',
            redirect_uri=redirect_uri,
            scopes=scopes,
            authorization_endpoint=_env_str(env, 'AUTHORIZATION_ENDPOINT'),
            token_endpoint=_env_str(env, 'TOKEN_ENDPOINT'),
            userinfo_endpoint=_env_str(env, 'USERINFO_ENDPOINT'),
            http_timeout=http_timeout,
        )
    except ValueError as exc:
        raise ConfigurationError(str(exc)) from exc

    return GatekeeperConfig(
        provider=provider,
        cookie_name=_env_str(env, 'AUTH_COOKIE_NAME') or COOKIE_NAME_TOKEN,
        cookie_secure=_env_bool(env, 'COOKIE_SECURE'),
        cookie_httponly=_env_bool(env, 'COOKIE_HTTPONLY'),
        reauth_on_invalid_cookie=_env_bool(env, 'REAUTH_ON_INVALID_COOKIE'),
        host=_env_str(env, 'HOST') or '127.0.0.1',
        port=port,
        log_level=(_env_str(env, 'LOG_LEVEL') or DEFAULT_LOG_LEVEL).lower(),
        log_pretty=_env_bool(env, 'LOG_PRETTY'),
    )
