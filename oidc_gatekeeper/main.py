import threading
from logging import getLogger
from typing import Mapping, Optional

import uvicorn
from fastapi import FastAPI

from . import RedirectRequired
from .app_logging import TRACE, setup_logger
from .authentication import authentication_error_handler, redirect_required_handler, \
    router as auth_router
from .config import GatekeeperConfig, load_config
from .exceptions import AuthenticationError, ConfigurationError
from .gatekeeper import Gatekeeper
from .idp import OidcIdpClient, discover
from .middleware import RequestLoggingMiddleware, ResponseHeadersMiddleware
from .signals import handle_signals

NAME = 'oidc-gatekeeper'
VERSION = '0.1.0'

SHUTDOWN_GRACE_SECONDS = 5


def create_app(config: GatekeeperConfig,
               idp: Optional[OidcIdpClient] = None,
               shutdown: Optional[threading.Event] = None) -> FastAPI:
    """
    Build the web application.

    Parameters
    ----------
    config : :class:`.GatekeeperConfig`
    idp : :class:`.OidcIdpClient`
        Built from ``config`` (fetching the discovery document if needed)
        when not given.
    shutdown : :class:`threading.Event`
        Set when the process is going down; in-flight authentications stop
        before their next call to the IdP.

    """
    logger = getLogger(__name__)
    if idp is None:
        idp = OidcIdpClient(discover(config.provider))
    if shutdown is None:
        shutdown = threading.Event()

    gatekeeper = Gatekeeper(idp, cookie_name=config.cookie_name,
                            reauth_on_invalid_cookie=config.reauth_on_invalid_cookie,
                            logger=getLogger('oidc_gatekeeper.gatekeeper'))

    logger.info(f"ISSUER: {config.provider.issuer}")
    logger.info(f"REDIRECT_URI: {config.provider.redirect_uri}")
    logger.info(f"AUTH_COOKIE_NAME: {config.cookie_name}")
    logger.info(f"REAUTH_ON_INVALID_COOKIE: {config.reauth_on_invalid_cookie}")
    if not config.cookie_secure:
        logger.warning("COOKIE_SECURE is off. The token cookie is sent over plain HTTP too.")

    app = FastAPI(
        title=NAME,
        version=VERSION,
        config=config,
        idp=idp,
        gatekeeper=gatekeeper,
        shutdown=shutdown,
    )

    app.add_middleware(ResponseHeadersMiddleware)
    app.add_middleware(RequestLoggingMiddleware, logger=getLogger('oidc_gatekeeper.requests'))
    app.include_router(auth_router)
    app.add_exception_handler(RedirectRequired, redirect_required_handler)
    app.add_exception_handler(AuthenticationError, authentication_error_handler)

    return app


def run(env: Optional[Mapping[str, str]] = None) -> int:
    """Serve until SIGINT/SIGTERM, then shut down within a grace period."""
    logger = getLogger(__name__)
    try:
        config = load_config(env)
        setup_logger(config.log_level, config.log_pretty)
    except ConfigurationError as exc:
        setup_logger()
        logger.critical('%s', exc)
        return 2
    logger.debug('Hello', extra={'version': VERSION, 'application': NAME,
                                 'log-level': config.log_level})

    shutdown = threading.Event()
    restore_signals = handle_signals(shutdown, logger)
    app = None
    try:
        try:
            app = create_app(config, shutdown=shutdown)
        except ConfigurationError as exc:
            logger.critical('%s', exc)
            return 2

        server = uvicorn.Server(uvicorn.Config(
            app, host=config.host, port=config.port, log_config=None,
            timeout_graceful_shutdown=SHUTDOWN_GRACE_SECONDS))
        # uvicorn leaves signal handling to us when it is not on the main thread
        thread = threading.Thread(target=server.run, name='uvicorn', daemon=True)
        thread.start()
        logger.info(f"Listening on http://{config.host}:{config.port}/")

        while not shutdown.wait(0.5):
            if not thread.is_alive():
                logger.error('server terminated')
                return 1

        logger.debug('Shutting down the server')
        server.should_exit = True
        thread.join(SHUTDOWN_GRACE_SECONDS + 1)
        if thread.is_alive():
            logger.warning('Server shutdown did not finish in %i seconds', SHUTDOWN_GRACE_SECONDS)
            return 1
        return 0
    finally:
        restore_signals()
        if app is not None:
            app.extra['idp'].close()
        logger.log(TRACE, 'deferred cleanup done')
        logger.debug('Bye', extra={'version': VERSION, 'application': NAME})
