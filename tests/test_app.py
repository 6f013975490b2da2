"""Tests for the web application in :mod:`oidc_gatekeeper.main`."""
import logging
import threading
from urllib.parse import urlparse

import pytest
import requests
from fastapi.testclient import TestClient

from oidc_gatekeeper import watch_request
from oidc_gatekeeper.app_logging import TRACE
from oidc_gatekeeper.config import GatekeeperConfig
from oidc_gatekeeper.main import create_app

USERINFO = {
    "sub": "f:1234",
    "email": "skunk@example.com",
    "realm_access": {"roles": ["default-roles", "moderator"]},
    "resource_access": {"gatekeeper-test": {"roles": ["viewer"]},
                        "other-client": {"roles": ["ignored"]}},
}


def test_valid_cookie(client, http_session, make_response):
    http_session.get.return_value = make_response(200, USERINFO)

    res = client.get("/", headers={"Cookie": "auth-token=tok-123"})

    assert res.status_code == 200
    assert res.text == "Received Token: tok-123"
    assert "set-cookie" not in res.headers
    http_session.post.assert_not_called()
    _, kwargs = http_session.get.call_args
    assert kwargs["headers"]["Authorization"] == "Bearer tok-123"


def test_no_cookie_redirects(client, idp, http_session):
    res = client.get("/")

    assert res.status_code == 302
    assert res.headers["location"] == idp.login_url
    location = urlparse(res.headers["location"])
    assert location.path.endswith("/protocol/openid-connect/auth")
    assert "set-cookie" not in res.headers
    http_session.get.assert_not_called()
    http_session.post.assert_not_called()


def test_callback_error(client, http_session):
    res = client.get("/", params={"error": "access_denied",
                                  "error_description": "User cancelled login"})

    assert res.status_code == 400
    assert "access_denied" in res.text
    assert "User cancelled login" in res.text
    http_session.get.assert_not_called()
    http_session.post.assert_not_called()


def test_code_exchange_sets_cookie(client, http_session, make_response):
    http_session.post.return_value = make_response(200, {"access_token": "tok-new",
                                                          "token_type": "Bearer"})
    http_session.get.return_value = make_response(200, USERINFO)

    res = client.get("/", params={"code": "abc", "session_state": "xyz"})

    assert res.status_code == 200
    assert res.text == "Received Token: tok-new"
    set_cookie = res.headers["set-cookie"]
    assert set_cookie.startswith("auth-token=tok-new;")
    assert "Path=/" in set_cookie
    assert "Secure" not in set_cookie
    assert "HttpOnly" not in set_cookie


def test_code_rejected(client, http_session, make_response):
    http_session.post.return_value = make_response(400, {"error": "invalid_grant"})

    res = client.get("/", params={"code": "used-twice"})

    assert res.status_code == 400
    assert "invalid_grant" in res.text
    assert "set-cookie" not in res.headers
    http_session.get.assert_not_called()


def test_exchanged_token_rejected(client, http_session, make_response):
    http_session.post.return_value = make_response(200, {"access_token": "tok-new"})
    http_session.get.return_value = make_response(401, {"error": "invalid_token"})

    res = client.get("/", params={"code": "abc"})

    assert res.status_code == 401
    assert "set-cookie" not in res.headers


def test_invalid_cookie(client, http_session, make_response):
    http_session.get.return_value = make_response(401, {"error": "invalid_token"})

    res = client.get("/", headers={"Cookie": "auth-token=tok-old"})

    assert res.status_code == 401
    assert res.text.startswith("Error checking auth:")


def test_invalid_cookie_reauth(provider_config, idp, http_session, make_response):
    config = GatekeeperConfig(provider=provider_config, reauth_on_invalid_cookie=True)
    client = TestClient(create_app(config, idp=idp), follow_redirects=False)
    http_session.get.return_value = make_response(401, {"error": "invalid_token"})

    res = client.get("/", headers={"Cookie": "auth-token=tok-old"})

    assert res.status_code == 302
    assert res.headers["location"] == idp.login_url


def test_conflicting_cookies(client, http_session):
    res = client.get("/", headers={"Cookie": "auth-token=one; auth-token=two"})

    assert res.status_code == 500
    http_session.get.assert_not_called()


def test_repeated_cookie_same_value(client, http_session, make_response):
    http_session.get.return_value = make_response(200, USERINFO)
    res = client.get("/", headers={"Cookie": "theme=dark; auth-token=tok-123; auth-token=tok-123"})
    assert res.status_code == 200


def test_userinfo_unreachable(client, http_session):
    http_session.get.side_effect = requests.exceptions.ReadTimeout("slow")

    res = client.get("/", headers={"Cookie": "auth-token=tok-123"})

    assert res.status_code == 401


def test_me(client, http_session, make_response):
    http_session.get.return_value = make_response(200, USERINFO)

    res = client.get("/me", headers={"Cookie": "auth-token=tok-123"})

    assert res.status_code == 200
    body = res.json()
    assert body["email"] == "skunk@example.com"
    assert body["groups"] == ["default-roles", "moderator", "viewer"]
    assert body["claims"] == USERINFO


def test_me_requires_auth(client):
    res = client.get("/me")
    assert res.status_code == 302


def test_favicon(client):
    res = client.get("/favicon.ico")
    assert res.status_code == 404
    assert res.text == "No favicon here"


def test_shutdown_cancels_exchange(config, idp, http_session):
    app = create_app(config, idp=idp)
    app.extra["shutdown"].set()
    client = TestClient(app, follow_redirects=False)

    res = client.get("/", params={"code": "abc"})

    assert res.status_code == 503
    http_session.post.assert_not_called()


def test_secure_cookie_flags(provider_config, idp, http_session, make_response):
    config = GatekeeperConfig(provider=provider_config, cookie_secure=True,
                              cookie_httponly=True)
    client = TestClient(create_app(config, idp=idp), follow_redirects=False)
    http_session.post.return_value = make_response(200, {"access_token": "tok-new"})
    http_session.get.return_value = make_response(200, USERINFO)

    res = client.get("/", params={"code": "abc"})

    set_cookie = res.headers["set-cookie"]
    assert "Secure" in set_cookie
    assert "HttpOnly" in set_cookie


def test_response_headers(client):
    res = client.get("/")
    assert res.headers["x-frame-options"] == "DENY"
    assert res.headers["content-security-policy"] == "frame-ancestors 'none'"


def test_request_logging(client, caplog):
    caplog.set_level(TRACE, logger="oidc_gatekeeper.requests")

    client.get("/favicon.ico")

    records = [r for r in caplog.records if r.name == "oidc_gatekeeper.requests"]
    received, served = records
    assert received.levelno == TRACE
    assert received.getMessage() == "request received"
    assert received.method == "GET"
    assert received.url == "/favicon.ico"
    assert served.levelno == logging.INFO
    assert served.getMessage() == "request served"
    assert served.status == 404
    assert served.request == received.request


async def _disconnected():
    return {"type": "http.disconnect"}


@pytest.mark.asyncio
async def test_disconnected_client_skips_exchange(app, http_session):
    scope = {
        "type": "http", "asgi": {"version": "3.0"}, "http_version": "1.1",
        "method": "GET", "scheme": "http", "path": "/", "raw_path": b"/",
        "root_path": "", "query_string": b"code=abc",
        "headers": [(b"host", b"testserver")],
        "client": ("127.0.0.1", 50000), "server": ("testserver", 80),
    }
    sent = []

    async def send(message):
        sent.append(message)

    await app(scope, _disconnected, send)

    start = sent[0]
    assert start["status"] == 503
    assert b"set-cookie" not in dict(start["headers"])
    http_session.post.assert_not_called()
    http_session.get.assert_not_called()


class FakeRequest:
    def __init__(self, polls_until_disconnect):
        self.polls = 0
        self.polls_until_disconnect = polls_until_disconnect

    async def is_disconnected(self):
        self.polls += 1
        return self.polls >= self.polls_until_disconnect


@pytest.mark.asyncio
async def test_watch_request_sets_cancel_on_disconnect():
    request = FakeRequest(polls_until_disconnect=3)
    cancel = threading.Event()

    await watch_request(request, cancel, interval=0)

    assert cancel.is_set()
    assert request.polls == 3


@pytest.mark.asyncio
async def test_watch_request_sets_cancel_on_shutdown():
    request = FakeRequest(polls_until_disconnect=1000)
    cancel = threading.Event()
    shutdown = threading.Event()
    shutdown.set()

    await watch_request(request, cancel, shutdown, interval=0)

    assert cancel.is_set()
    assert request.polls == 0
