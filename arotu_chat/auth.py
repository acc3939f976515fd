"""
Token verification.

Tokens are issued elsewhere (the auth service signs them with the shared
secret); here we only turn a bearer token into the caller's identity.
"""
from typing import Optional

import jwt
from bson import ObjectId
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .config import Settings
from .errors import Unauthenticated

bearer_scheme = HTTPBearer(auto_error=False)


def verify_token(token: Optional[str], settings: Settings) -> str:
    if not token:
        raise Unauthenticated('Unauthorized')
    try:
        claims = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.PyJWTError:
        raise Unauthenticated('Invalid token')
    identity = claims.get('id') or claims.get('sub')
    if not isinstance(identity, str) or not ObjectId.is_valid(identity):
        raise Unauthenticated('Token does not carry a valid user id')
    return str(ObjectId(identity))


def issue_token(identity: str, settings: Settings, **claims) -> str:
    """Sign a token the way the auth service does; used by tooling and tests."""
    return jwt.encode({'id': identity, **claims}, settings.jwt_secret, algorithm=settings.jwt_algorithm)


async def current_user_id(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> str:
    token = credentials.credentials if credentials else None
    return verify_token(token, request.app.state.settings)
