import functools
from dataclasses import dataclass, field

import jwt
from flask import request, current_app, abort, g

from . import tokens
from .permissions import role_permissions
from ..logger import make_logger

logger = make_logger('consultrack.auth')


@dataclass(frozen=True)
class Identity:
    user_id: int
    tenant_id: int
    role: str


@dataclass
class AuthState:
    token: str | None = None
    payload: dict | None = None
    reason: str | None = None
    identity: Identity | None = None
    perms: frozenset[str] = field(default_factory=frozenset)


class InvalidToken(Exception):
    pass


def _read_token() -> str | None:
    header = request.headers.get('Authorization', '')
    scheme, _, credentials = header.partition(' ')
    if scheme.lower() == 'bearer' and credentials.strip():
        return credentials.strip()
    return request.cookies.get('AuthToken')


def _parse_auth_token_state() -> AuthState:
    auth_state = AuthState(token=_read_token())

    if not auth_state.token:
        auth_state.reason = "Authentication Required"
        return auth_state

    try:
        auth_state.payload = tokens.decode(current_app, auth_state.token)
        if auth_state.payload.get('use') != 'auth':
            raise InvalidToken(f"Invalid token use code `{auth_state.payload.get('use')}`")
        if not auth_state.payload.get('sub'):
            raise InvalidToken("Missing token sub")

        ctx = auth_state.payload.get('ctx') or {}
        if ctx.get('tenant_id') is None:
            raise InvalidToken("Missing tenant")

        auth_state.identity = Identity(
            user_id=int(auth_state.payload['sub']),
            tenant_id=int(ctx['tenant_id']),
            role=ctx.get('role') or 'Default',
        )
        auth_state.perms = role_permissions(auth_state.identity.role)
    except jwt.exceptions.ExpiredSignatureError as exc:
        logger.debug("authentication failure due to: %s", exc)
        auth_state.reason = "Token Expired"
    except (jwt.exceptions.InvalidTokenError, InvalidToken, ValueError, TypeError) as exc:
        logger.info("authentication failure due to: %s", exc)
        auth_state.reason = "Invalid Token"

    return auth_state


def auth_middleware():
    g.auth_state = _parse_auth_token_state()


def authenticated(_func):
    @functools.wraps(_func)
    def wrapped(*args, **kwargs):
        if g.auth_state.reason:
            abort(401, g.auth_state.reason)

        return _func(identity=g.auth_state.identity, *args, **kwargs)

    return wrapped


def _check_permission(perms: frozenset[str], required_permission: str):
    return required_permission in perms


def _enforce_permission(perms: frozenset[str], required_permission: str):
    if _check_permission(perms, required_permission):
        return True
    abort(403, "Permission required.")


def requires(permission: str):
    def wrapper(_func):
        @functools.wraps(_func)
        def inner(identity, *args, **kwargs):
            _enforce_permission(g.auth_state.perms, permission)
            return _func(identity, *args, **kwargs)

        return inner

    return wrapper