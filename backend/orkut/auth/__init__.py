"""
Request authentication.

End users sign in with the hosted auth provider, which issues HS256 access
tokens. Routes declare ``user: AuthorizedUser`` to require one.
"""

import logging
from typing import Annotated, Optional

import jwt
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel

from orkut.libs import config

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


class User(BaseModel):
    sub: str
    email: Optional[str] = None
    display_name: Optional[str] = None


def _unauthorized(message: str) -> HTTPException:
    return HTTPException(
        status_code=401,
        detail={"error": "unauthorized", "message": message},
        headers={"WWW-Authenticate": "Bearer"},
    )


def decode_access_token(token: str) -> User:
    secret = config.jwt_secret()
    if not secret:
        logger.error("SUPABASE_JWT_SECRET not set - cannot verify access tokens")
        raise _unauthorized("Authentication is not configured")
    try:
        claims = jwt.decode(token, secret, algorithms=["HS256"], audience=config.jwt_audience())
    except jwt.ExpiredSignatureError:
        raise _unauthorized("Access token expired")
    except jwt.InvalidTokenError as e:
        logger.info("Rejected access token: %s", e)
        raise _unauthorized("Invalid access token")

    if not claims.get("sub"):
        raise _unauthorized("Access token has no subject")
    metadata = claims.get("user_metadata") or {}
    return User(sub=claims["sub"], email=claims.get("email"), display_name=metadata.get("display_name"))


def get_authorized_user(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(bearer_scheme)],
) -> User:
    if credentials is None:
        raise _unauthorized("Not authorized")
    return decode_access_token(credentials.credentials)


AuthorizedUser = Annotated[User, Depends(get_authorized_user)]
