"""Special pytest fixture configuration file.

This file automatically provides all fixtures defined in it to all
pytest tests in this directory and sub directories.

See https://docs.pytest.org/en/6.2.x/fixture.html#conftest-py-sharing-fixtures-across-multiple-files
"""
from typing import Any, Optional
from unittest import mock

import pytest
import requests
from fastapi.testclient import TestClient

from oidc_gatekeeper.config import GatekeeperConfig, ProviderConfig
from oidc_gatekeeper.idp import OidcIdpClient
from oidc_gatekeeper.main import create_app

ISSUER = "https://idp.example.org/realms/go-experiments"


@pytest.fixture
def provider_config():
    return ProviderConfig(
        issuer=ISSUER,
        client_id="gatekeeper-test",
        client_secret=f"fake set in {__file__}",
        redirect_uri="http://localhost:8080/",
        authorization_endpoint=f"{ISSUER}/protocol/openid-connect/auth",
        token_endpoint=f"{ISSUER}/protocol/openid-connect/token",
        userinfo_endpoint=f"{ISSUER}/protocol/openid-connect/userinfo",
        http_timeout=3,
    )


@pytest.fixture
def config(provider_config):
    return GatekeeperConfig(provider=provider_config)


@pytest.fixture
def make_response():
    """Builds stand-ins for :class:`requests.Response`."""

    def _make(status_code: int = 200, body: Optional[Any] = None) -> mock.MagicMock:
        response = mock.MagicMock(status_code=status_code, ok=status_code < 400)
        if body is None:
            response.json.side_effect = ValueError("No JSON")
        else:
            response.json.return_value = body
        return response

    return _make


@pytest.fixture
def http_session():
    return mock.MagicMock(spec=requests.Session)


@pytest.fixture
def idp(provider_config, http_session):
    return OidcIdpClient(provider_config, session=http_session)


@pytest.fixture
def app(config, idp):
    return create_app(config, idp=idp)


@pytest.fixture
def client(app):
    return TestClient(app, follow_redirects=False)
