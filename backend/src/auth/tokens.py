"""
Access token verification with PyJWT.

Tokens are HS256 JWTs issued by the identity provider and signed with
AUTH_JWT_SECRET. When AUTH_JWT_AUDIENCE is set (default "authenticated")
the aud claim is verified as well.
"""

import logging
import os
from typing import Optional

import jwt
from pydantic import BaseModel

from src.auth.context import AuthContext

logger = logging.getLogger(__name__)


class TokenError(Exception):
    """Base class for token verification errors."""
    pass


class TokenExpiredError(TokenError):
    pass


class TokenValidationError(TokenError):
    pass


class AuthTokenConfig(BaseModel):
    """Configuration for access token verification."""
    jwt_secret: str
    algorithm: str = "HS256"
    audience: Optional[str] = None

    @classmethod
    def from_env(cls) -> "AuthTokenConfig":
        secret = os.getenv("AUTH_JWT_SECRET")
        if not secret:
            raise ValueError("AUTH_JWT_SECRET environment variable is required")
        audience = os.getenv("AUTH_JWT_AUDIENCE", "authenticated") or None
        return cls(jwt_secret=secret, audience=audience)


def decode_access_token(token: str, config: Optional[AuthTokenConfig] = None) -> AuthContext:
    """
    Verify a bearer token and build the AuthContext.

    Raises:
        TokenExpiredError: If the token has expired
        TokenValidationError: If the signature, audience or claims are invalid
    """
    config = config or AuthTokenConfig.from_env()
    options = {"require": ["sub", "exp"]}
    if not config.audience:
        options["verify_aud"] = False
    try:
        payload = jwt.decode(
            token,
            config.jwt_secret,
            algorithms=[config.algorithm],
            audience=config.audience,
            options=options,
        )
    except jwt.ExpiredSignatureError:
        raise TokenExpiredError("Token has expired")
    except jwt.InvalidTokenError as e:
        raise TokenValidationError(f"Invalid token: {str(e)}")

    metadata = payload.get("user_metadata") or {}
    return AuthContext(
        user_id=str(payload["sub"]),
        email=payload.get("email"),
        name=metadata.get("full_name") or metadata.get("name") or payload.get("name"),
        claims=payload,
    )
