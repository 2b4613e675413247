from datetime import datetime, timedelta, timezone

import jwt
from flask import Flask


def make_token(app: Flask,
               use: str,
               sub=None,
               ctx_payload: dict = None,
               expires_in: timedelta = timedelta(hours=1)) -> str:
    """
    Base `jwt.encode` wrapper, used to centralize jwt secret access and standardize JWT payload structure.

    :param app: the flask app, needed to access the JWT_SECRET
    :param use: str value identifying the purpose of the token i.e. auth
    :param sub: optional, but will be the standardized user id field
    :param ctx_payload: any extra data that will be encoded to the `ctx` field
    :param expires_in: By default expires in 1 hour
    :return: str, The encoded JWT
    """
    now = datetime.now(timezone.utc)
    payload = {
        'iat': now,
        'exp': now + expires_in,
        'iss': app.config['JWT_ISSUER'],
        'use': use,
        'ctx': ctx_payload or {},
    }
    if sub:
        payload['sub'] = str(sub)
    return jwt.encode(payload, key=app.config['JWT_SECRET'], algorithm='HS256')


def make_auth_token(app: Flask, user_id: int, tenant_id: int, role: str,
                    expires_in: timedelta = timedelta(hours=1)) -> str:
    return make_token(
        app,
        use='auth',
        sub=user_id,
        ctx_payload={
            'tenant_id': tenant_id,
            'role': role,
        },
        expires_in=expires_in)


def decode(app: Flask, token: str) -> dict:
    return jwt.decode(token, key=app.config['JWT_SECRET'], algorithms=['HS256'])
