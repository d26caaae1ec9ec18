"""
FastAPI authentication dependencies.

require_auth verifies the bearer token; get_current_user loads (or
provisions on first sight) the matching users row.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from src.auth.context import AuthContext
from src.auth.tokens import TokenError, TokenExpiredError, decode_access_token
from src.database.session import get_db_session
from src.models.user import User

logger = logging.getLogger(__name__)


def _extract_bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def require_auth(request: Request) -> AuthContext:
    """
    Dependency that requires a valid bearer token.

    Raises:
        HTTPException 401: If the token is missing, invalid or expired
    """
    token = _extract_bearer_token(request)
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")

    try:
        auth = decode_access_token(token)
    except TokenExpiredError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token has expired")
    except TokenError as e:
        logger.info("Rejected access token", extra={"reason": str(e), "path": request.url.path})
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")

    request.state.auth = auth
    return auth


def get_current_user(
    auth: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db_session),
) -> User:
    """
    Load the users row for the authenticated subject.

    Users are provisioned on their first authenticated request with the
    email from the token.
    """
    user = db.query(User).filter(User.id == auth.user_id).first()
    if user is None:
        if not auth.email:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token has no email claim")
        user = User(
            id=auth.user_id,
            email=auth.email.lower(),
            name=auth.name,
            last_login_at=datetime.now(timezone.utc),
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        logger.info("Provisioned user on first login", extra={"user_id": user.id})
    return user
