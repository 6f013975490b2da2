"""Routes guarded by the gatekeeper.

``/`` is both the protected page and the OAuth2 callback: the configured
redirect URI points back at it, so the IdP returns the browser here with
``code`` or ``error`` in the query.
"""
from logging import getLogger
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import PlainTextResponse, RedirectResponse, Response

from . import RedirectRequired, get_current_auth
from .exceptions import AuthenticationError
from .gatekeeper import Authenticated

logger = getLogger(__name__)

router = APIRouter()


def groups_from_claims(claims: Dict[str, Any], client_id: str) -> List[str]:
    """Roles and groups of the subject, in the shapes Keycloak and others use."""
    groups: List[str] = []
    realm_access = claims.get('realm_access')
    if isinstance(realm_access, dict):
        groups.extend(str(r) for r in realm_access.get('roles') or [])
    resource_access = claims.get('resource_access')
    if isinstance(resource_access, dict):
        client_access = resource_access.get(client_id)
        if isinstance(client_access, dict):
            groups.extend(str(r) for r in client_access.get('roles') or [])
    plain_groups = claims.get('groups')
    if isinstance(plain_groups, list):
        groups.extend(str(g) for g in plain_groups)
    # keep order, drop repeats
    return list(dict.fromkeys(groups))


@router.get('/', response_class=PlainTextResponse)
def protected_root(auth: Authenticated = Depends(get_current_auth)) -> str:
    """Show the token to whoever made it through the gatekeeper."""
    logger.info('Token received from check_auth')
    return f'Received Token: {auth.token}'


@router.get('/me')
def me(request: Request,
       auth: Authenticated = Depends(get_current_auth)) -> Dict[str, Any]:
    """Who the IdP says the token belongs to."""
    client_id = request.app.extra['config'].provider.client_id
    claims = auth.userinfo
    groups = groups_from_claims(claims, client_id)
    logger.debug('User email: %s, groups: %s', claims.get('email'), groups)
    return {
        'email': claims.get('email'),
        'groups': groups,
        'claims': claims,
    }


@router.get('/favicon.ico')
def favicon() -> Response:
    return PlainTextResponse('No favicon here', status_code=status.HTTP_404_NOT_FOUND)


def redirect_required_handler(request: Request, exc: RedirectRequired) -> Response:
    return RedirectResponse(exc.url, status_code=status.HTTP_302_FOUND)


def authentication_error_handler(request: Request, exc: AuthenticationError) -> Response:
    logger.info('Error checking auth: %s', exc)
    return PlainTextResponse(f'Error checking auth: {exc}', status_code=exc.status_code)
